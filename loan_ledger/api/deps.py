"""
Ledger system container and request dependencies
"""

from datetime import date
from typing import Optional

from fastapi import HTTPException
from fastapi.encoders import jsonable_encoder

from ..account_ledger import AccountLedger
from ..audit import AuditTrail
from ..config import LedgerConfig, get_config
from ..exceptions import LedgerError, NotFoundError, StorageError
from ..interest import InterestAccrualEngine
from ..invoices import ReconciliationEngine
from ..loans import LoanManager
from ..logging_config import get_logger
from ..payments import PaymentProcessor
from ..reporting import portfolio_summary
from ..storage import StorageInterface
from ..store import LedgerStore, create_storage


logger = get_logger("loan_ledger.api")


class LedgerSystem:
    """Every ledger component wired to one storage backend"""
    
    def __init__(self, config: Optional[LedgerConfig] = None,
                 storage: Optional[StorageInterface] = None):
        self.config = config or get_config()
        self.storage = storage or create_storage(self.config)
        self.store = LedgerStore(self.storage)
        self.audit_trail = AuditTrail(self.storage) if self.config.enable_audit_trail else None
        
        self.account_ledger = AccountLedger(self.store, self.audit_trail)
        self.reconciliation = ReconciliationEngine(self.store, self.audit_trail, self.config)
        self.interest_engine = InterestAccrualEngine(self.store, self.audit_trail, self.config)
        self.payment_processor = PaymentProcessor(
            self.store, self.account_ledger, self.reconciliation,
            self.audit_trail, self.config
        )
        self.loan_manager = LoanManager(
            self.store, self.account_ledger, self.reconciliation,
            self.audit_trail, self.config
        )
    
    def summary(self, as_of: date):
        return portfolio_summary(self.store, as_of, self.config)
    
    def close(self) -> None:
        self.storage.close()


_ledger_system: Optional[LedgerSystem] = None


def get_ledger_system() -> LedgerSystem:
    """Process-wide ledger system, built from configuration on first use"""
    global _ledger_system
    if _ledger_system is None:
        _ledger_system = LedgerSystem()
    return _ledger_system


def get_today() -> date:
    """The current date handed to the core on every request"""
    return date.today()


def http_error(exc: LedgerError) -> HTTPException:
    """Translate a ledger error into an HTTP error response"""
    if isinstance(exc, NotFoundError):
        status_code = 404
    elif isinstance(exc, StorageError):
        logger.error(f"Storage failure: {exc}")
        status_code = 500
    else:
        status_code = 400
    return HTTPException(
        status_code=status_code,
        detail=jsonable_encoder({'error': exc.message, 'details': exc.details})
    )
