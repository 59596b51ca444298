"""
Ledger Store Module

Entity-level persistence contract consumed by the engines. Wraps a generic
``StorageInterface`` backend; any backend failure is re-raised as
``StorageError`` naming the operation that failed.
"""

import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from .config import LedgerConfig
from .exceptions import LedgerError, NotFoundError, StorageError
from .logging_config import get_logger
from .models import AccountTransaction, InterestEvent, Loan, MonthlyInvoice, Payment
from .storage import InMemoryStorage, SQLiteStorage, StorageInterface


def create_storage(config: LedgerConfig) -> StorageInterface:
    """Build the storage backend selected by configuration"""
    backend = config.storage_backend.lower()
    if backend == "memory":
        return InMemoryStorage()
    if backend == "sqlite":
        return SQLiteStorage(config.database_path)
    raise ValueError(f"Unknown storage backend: {config.storage_backend}")


class LedgerStore:
    """
    Typed CRUD over loans, payments, interest events, account transactions
    and monthly invoices
    """
    
    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.loans_table = "loans"
        self.payments_table = "payments"
        self.interest_events_table = "interest_events"
        self.transactions_table = "account_transactions"
        self.invoices_table = "monthly_invoices"
        self.logger = get_logger("loan_ledger.store")
    
    @contextmanager
    def _step(self, step: str):
        try:
            yield
        except LedgerError:
            raise
        except (sqlite3.Error, OSError) as e:
            self.logger.error(f"Storage step '{step}' failed: {e}")
            raise StorageError(step, e) from e
    
    @contextmanager
    def atomic(self):
        """Group several writes into one storage transaction"""
        with self.storage.atomic():
            yield
    
    def next_id(self, table: str) -> int:
        """Next sequential integer id for a table"""
        with self._step(f"next_id:{table}"):
            highest = self.storage.max_int(table, 'id')
        return (highest or 0) + 1
    
    # Loans
    
    def get_loans(self) -> List[Loan]:
        with self._step("get_loans"):
            loans = [Loan.from_dict(data) for data in self.storage.load_all(self.loans_table)]
        return sorted(loans, key=lambda loan: loan.id)
    
    def get_loan(self, loan_id: int) -> Optional[Loan]:
        with self._step("get_loan"):
            data = self.storage.load(self.loans_table, str(loan_id))
            return Loan.from_dict(data) if data else None
    
    def save_loan(self, loan: Loan) -> int:
        with self._step("save_loan"):
            self.storage.save(self.loans_table, str(loan.id), loan.to_dict())
        return loan.id
    
    def update_loan(self, loan_id: int, changes: Dict[str, Any]) -> Loan:
        """
        Partially update a loan
        
        Args:
            loan_id: Loan to update
            changes: Field name to new value; unspecified fields are kept
            
        Returns:
            The updated loan
        """
        loan = self.get_loan(loan_id)
        if loan is None:
            raise NotFoundError("loan", loan_id)
        for name, value in changes.items():
            if not hasattr(loan, name):
                raise ValueError(f"Loan has no field '{name}'")
            setattr(loan, name, value)
        self.save_loan(loan)
        return loan
    
    def delete_loan(self, loan_id: int) -> bool:
        """Delete a loan together with its payments and interest events"""
        with self._step("delete_loan"):
            with self.storage.atomic():
                for payment in self.storage.find(self.payments_table, {'loan_id': loan_id}):
                    self.storage.delete(self.payments_table, str(payment['id']))
                for event in self.storage.find(self.interest_events_table, {'loan_id': loan_id}):
                    self.storage.delete(self.interest_events_table, str(event['id']))
                return self.storage.delete(self.loans_table, str(loan_id))
    
    # Payments
    
    def get_payments(self) -> List[Payment]:
        with self._step("get_payments"):
            payments = [Payment.from_dict(data)
                        for data in self.storage.load_all(self.payments_table)]
        return sorted(payments, key=lambda p: (p.date, p.id))
    
    def get_loan_payments(self, loan_id: int) -> List[Payment]:
        with self._step("get_loan_payments"):
            payments = [Payment.from_dict(data)
                        for data in self.storage.find(self.payments_table, {'loan_id': loan_id})]
        return sorted(payments, key=lambda p: (p.date, p.id))
    
    def get_payment(self, payment_id: int) -> Optional[Payment]:
        with self._step("get_payment"):
            data = self.storage.load(self.payments_table, str(payment_id))
            return Payment.from_dict(data) if data else None
    
    def save_payment(self, payment: Payment) -> int:
        with self._step("save_payment"):
            self.storage.save(self.payments_table, str(payment.id), payment.to_dict())
        return payment.id
    
    def delete_payment(self, payment_id: int) -> bool:
        with self._step("delete_payment"):
            return self.storage.delete(self.payments_table, str(payment_id))
    
    # Interest events
    
    def get_interest_events(self, loan_id: Optional[int] = None) -> List[InterestEvent]:
        with self._step("get_interest_events"):
            if loan_id is None:
                records = self.storage.load_all(self.interest_events_table)
            else:
                records = self.storage.find(self.interest_events_table, {'loan_id': loan_id})
        return [InterestEvent.from_dict(data) for data in records]
    
    def save_interest_event(self, event: InterestEvent) -> None:
        with self._step("save_interest_event"):
            self.storage.save(self.interest_events_table, event.id, event.to_dict())
    
    # Account transactions
    
    def get_account_transactions(self) -> List[AccountTransaction]:
        """All ledger rows ordered by date, then id"""
        with self._step("get_account_transactions"):
            rows = [AccountTransaction.from_dict(data)
                    for data in self.storage.load_all(self.transactions_table)]
        return sorted(rows, key=lambda t: (t.date, t.id))
    
    def last_account_transaction(self) -> Optional[AccountTransaction]:
        """Most recently appended ledger row"""
        with self._step("last_account_transaction"):
            data = self.storage.last(self.transactions_table)
        return AccountTransaction.from_dict(data) if data else None
    
    def save_account_transaction(self, transaction: AccountTransaction) -> int:
        if transaction.id is None:
            transaction.id = self.next_id(self.transactions_table)
        with self._step("save_account_transaction"):
            self.storage.save(self.transactions_table, str(transaction.id), transaction.to_dict())
        return transaction.id
    
    # Monthly invoices
    
    def get_monthly_invoices(self) -> List[MonthlyInvoice]:
        with self._step("get_monthly_invoices"):
            invoices = [MonthlyInvoice.from_dict(data)
                        for data in self.storage.load_all(self.invoices_table)]
        return sorted(invoices, key=lambda inv: (inv.year, inv.month))
    
    def get_monthly_invoice(self, month: int, year: int) -> Optional[MonthlyInvoice]:
        with self._step("get_monthly_invoice"):
            records = self.storage.find(self.invoices_table, {'month': month, 'year': year})
        return MonthlyInvoice.from_dict(records[0]) if records else None
    
    def save_monthly_invoice(self, invoice: MonthlyInvoice) -> str:
        """Upsert keyed by (month, year) through the deterministic invoice id"""
        with self._step("save_monthly_invoice"):
            self.storage.save(self.invoices_table, invoice.id, invoice.to_dict())
        return invoice.id
    
    def delete_monthly_invoice(self, invoice_id: str) -> bool:
        with self._step("delete_monthly_invoice"):
            return self.storage.delete(self.invoices_table, invoice_id)
