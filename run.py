#!/usr/bin/env python3
"""
Loan Ledger Entry Point

Starts the FastAPI server on the configured host and port.
"""

import sys

from loan_ledger.api import run_server
from loan_ledger.config import get_config
from loan_ledger.logging_config import setup_logging


if __name__ == "__main__":
    config = get_config()
    logger = setup_logging(config.log_level, config.log_format)
    logger.info(f"Starting loan ledger API on http://{config.api_host}:{config.api_port} "
                f"(storage: {config.storage_backend})")
    
    try:
        run_server(host=config.api_host, port=config.api_port, debug=False)
    except KeyboardInterrupt:
        logger.info("Shutting down loan ledger API")
    except Exception as e:
        logger.error(f"Error starting server: {e}")
        sys.exit(1)
