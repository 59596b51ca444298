"""
Loan Ledger API Application Factory
"""

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from .loans import router as loans_router
from .payments import router as payments_router
from .invoices import router as invoices_router
from .account import router as account_router
from .reports import router as reports_router
from .deps import LedgerSystem, get_ledger_system, get_today


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Loan Ledger API",
        description="Simple-interest loan ledger with monthly interest reconciliation",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    
    app.include_router(loans_router, prefix="/loans", tags=["Loans"])
    app.include_router(payments_router, prefix="/payments", tags=["Payments"])
    app.include_router(invoices_router, prefix="/invoices", tags=["Invoices"])
    app.include_router(account_router, prefix="/account", tags=["Account"])
    app.include_router(reports_router, prefix="/reports", tags=["Reports"])
    
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "loan_ledger_api",
            "version": __version__
        }
    
    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Loan Ledger API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "loans": "/loans",
                "payments": "/payments",
                "invoices": "/invoices",
                "account": "/account",
                "reports": "/reports"
            }
        }
    
    return app


# Module-level app for uvicorn
app = create_app()


def run_server(host: str = "127.0.0.1", port: int = 8090, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "loan_ledger.api:app",
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )


__all__ = ["app", "create_app", "run_server", "LedgerSystem", "get_ledger_system", "get_today"]
