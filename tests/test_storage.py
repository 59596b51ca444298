"""
Tests for storage backends, transaction support and the typed ledger store
"""

import sqlite3
import tempfile
import pytest
from decimal import Decimal
from datetime import date
from pathlib import Path

from loan_ledger.config import LedgerConfig
from loan_ledger.exceptions import NotFoundError, StorageError
from loan_ledger.models import (
    AccountTransaction, InvoiceStatus, Loan, LoanStatus, MonthlyInvoice,
    Payment, TransactionType
)
from loan_ledger.storage import InMemoryStorage, SQLiteStorage
from loan_ledger.store import LedgerStore, create_storage


record = {
    "id": "1",
    "debtor_name": "Alice",
    "amount": "100.50",
    "loan_id": 1
}


def exercise_crud(storage):
    storage.save("loans", "1", record)
    assert storage.load("loans", "1") == record
    assert storage.exists("loans", "1")
    assert not storage.exists("loans", "2")
    
    storage.save("loans", "2", {"id": "2", "loan_id": 2})
    assert len(storage.load_all("loans")) == 2
    assert [r["id"] for r in storage.find("loans", {"loan_id": 1})] == ["1"]
    assert storage.count("loans") == 2
    
    # Upsert replaces the record in place
    storage.save("loans", "1", dict(record, amount="200"))
    assert storage.load("loans", "1")["amount"] == "200"
    assert [r["id"] for r in storage.load_all("loans")] == ["1", "2"]
    
    assert storage.delete("loans", "1")
    assert not storage.delete("loans", "1")
    assert storage.count("loans") == 1
    
    storage.clear_table("loans")
    assert storage.count("loans") == 0


def exercise_rollback(storage):
    storage.save("loans", "1", record)
    with pytest.raises(RuntimeError):
        with storage.atomic():
            storage.save("loans", "2", {"id": "2"})
            storage.delete("loans", "1")
            raise RuntimeError("boom")
    
    assert storage.exists("loans", "1")
    assert not storage.exists("loans", "2")
    
    with storage.atomic():
        storage.save("loans", "3", {"id": "3"})
        with storage.atomic():
            storage.save("loans", "4", {"id": "4"})
    assert storage.count("loans") == 3


def exercise_queries(storage):
    assert storage.last("loans") is None
    assert storage.max_int("loans", "id") is None
    
    storage.save("loans", "7", {"id": 7, "loan_id": 1, "month": 1, "year": 2025})
    storage.save("loans", "3", {"id": 3, "loan_id": 1, "month": 2, "year": 2025, "note": None})
    storage.save("loans", "5", {"id": 5, "loan_id": 2, "month": 1, "year": 2024})
    
    # Latest insertion, not highest id
    assert storage.last("loans")["id"] == 5
    assert storage.max_int("loans", "id") == 7
    
    storage.save("loans", "7", {"id": 7, "loan_id": 1, "month": 3, "year": 2025})
    assert storage.last("loans")["id"] == 5
    
    assert [r["id"] for r in storage.find("loans", {"loan_id": 1})] == [7, 3]
    assert [r["id"] for r in storage.find("loans", {"month": 1, "year": 2024})] == [5]
    assert [r["id"] for r in storage.find("loans", {"note": None})] == [3]
    assert storage.find("loans", {"loan_id": "1"}) == []
    assert storage.find("loans", {"missing": 1}) == []


class TestStorageBackends:
    """Test both storage backends against the same contract"""
    
    def test_in_memory_crud(self):
        storage = InMemoryStorage()
        exercise_crud(storage)
        storage.close()
    
    def test_in_memory_rollback(self):
        exercise_rollback(InMemoryStorage())
    
    def test_in_memory_returns_copies(self):
        storage = InMemoryStorage()
        storage.save("loans", "1", record)
        loaded = storage.load("loans", "1")
        loaded["amount"] = "0"
        assert storage.load("loans", "1")["amount"] == "100.50"
    
    def test_sqlite_crud(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            storage = SQLiteStorage(Path(temp_dir) / "ledger.db")
            exercise_crud(storage)
            storage.close()
    
    def test_sqlite_rollback(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            storage = SQLiteStorage(Path(temp_dir) / "ledger.db")
            exercise_rollback(storage)
            storage.close()
    
    def test_in_memory_queries(self):
        exercise_queries(InMemoryStorage())
    
    def test_sqlite_queries(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            storage = SQLiteStorage(Path(temp_dir) / "ledger.db")
            exercise_queries(storage)
            storage.close()
    
    def test_sqlite_persists_across_connections(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = Path(temp_dir) / "nested" / "ledger.db"
            storage = SQLiteStorage(db_path)
            storage.save("loans", "1", record)
            storage.close()
            
            reopened = SQLiteStorage(db_path)
            assert reopened.load("loans", "1") == record
            reopened.close()
    
    def test_sqlite_in_memory(self):
        storage = SQLiteStorage()
        storage.save("loans", "1", record)
        assert storage.load("loans", "1") == record
        storage.close()


class TestCreateStorage:
    
    def test_memory_backend(self):
        assert isinstance(create_storage(LedgerConfig(storage_backend="memory")), InMemoryStorage)
    
    def test_sqlite_backend(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            config = LedgerConfig(storage_backend="SQLite",
                                  database_path=str(Path(temp_dir) / "ledger.db"))
            storage = create_storage(config)
            assert isinstance(storage, SQLiteStorage)
            storage.close()
    
    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_storage(LedgerConfig(storage_backend="postgres"))


class BrokenStorage(InMemoryStorage):
    """Backend whose writes to one table always fail"""
    
    def save(self, table, record_id, data):
        if table == "payments":
            raise sqlite3.OperationalError("database is locked")
        super().save(table, record_id, data)


class TestLedgerStore:
    """Test typed persistence of ledger entities"""
    
    def setup_method(self):
        self.store = LedgerStore(InMemoryStorage())
    
    def make_loan(self, loan_id=1, start=date(2025, 1, 1)):
        return Loan(
            id=loan_id,
            debtor_name="Alice",
            original_principal=Decimal("1000"),
            remaining_principal=Decimal("1000"),
            interest_rate=Decimal("12"),
            start_date=start
        )
    
    def make_payment(self, payment_id, loan_id=1, payment_date=date(2025, 1, 31)):
        return Payment(
            id=payment_id,
            loan_id=loan_id,
            date=payment_date,
            total_paid=Decimal("100"),
            interest_paid=Decimal("9.86"),
            principal_paid=Decimal("90.14")
        )
    
    def test_loan_round_trip(self):
        loan = self.make_loan()
        self.store.save_loan(loan)
        assert self.store.get_loan(1) == loan
        assert self.store.get_loan(2) is None
    
    def test_loans_sorted_by_id(self):
        for loan_id in (3, 1, 2):
            self.store.save_loan(self.make_loan(loan_id))
        assert [loan.id for loan in self.store.get_loans()] == [1, 2, 3]
        assert self.store.next_id(self.store.loans_table) == 4
    
    def test_update_loan_keeps_other_fields(self):
        self.store.save_loan(self.make_loan())
        
        updated = self.store.update_loan(1, {
            'remaining_principal': Decimal("0"),
            'status': LoanStatus.PAID
        })
        
        loaded = self.store.get_loan(1)
        assert loaded == updated
        assert loaded.status == LoanStatus.PAID
        assert loaded.debtor_name == "Alice"
        assert loaded.original_principal == Decimal("1000")
    
    def test_update_missing_loan(self):
        with pytest.raises(NotFoundError):
            self.store.update_loan(9, {'debtor_name': "Bob"})
    
    def test_update_unknown_field(self):
        self.store.save_loan(self.make_loan())
        with pytest.raises(ValueError):
            self.store.update_loan(1, {'colour': "red"})
    
    def test_payments_sorted_by_date(self):
        self.store.save_loan(self.make_loan())
        self.store.save_payment(self.make_payment(1, payment_date=date(2025, 2, 1)))
        self.store.save_payment(self.make_payment(2, payment_date=date(2025, 1, 15)))
        
        assert [p.id for p in self.store.get_payments()] == [2, 1]
        assert [p.id for p in self.store.get_loan_payments(1)] == [2, 1]
        assert self.store.get_loan_payments(2) == []
        assert self.store.get_payment(1).total_paid == Decimal("100")
    
    def test_delete_loan_cascades(self):
        self.store.save_loan(self.make_loan(1))
        self.store.save_loan(self.make_loan(2))
        self.store.save_payment(self.make_payment(1, loan_id=1))
        self.store.save_payment(self.make_payment(2, loan_id=2))
        
        assert self.store.delete_loan(1)
        
        assert [loan.id for loan in self.store.get_loans()] == [2]
        assert [p.id for p in self.store.get_payments()] == [2]
    
    def test_account_transaction_ids(self):
        row = AccountTransaction(
            id=None,
            balance=Decimal("500"),
            transaction_type=TransactionType.INITIAL,
            transaction_amount=Decimal("500"),
            description="Opening",
            date=date(2025, 1, 1)
        )
        assert self.store.save_account_transaction(row) == 1
        assert row.id == 1
        assert self.store.last_account_transaction() == row
    
    def test_invoice_upsert_by_month(self):
        first = MonthlyInvoice(month=1, year=2025, total_accrued=Decimal("10"),
                               total_paid=Decimal("0"), remaining=Decimal("10"),
                               status=InvoiceStatus.PENDING)
        self.store.save_monthly_invoice(first)
        second = MonthlyInvoice(month=1, year=2025, total_accrued=Decimal("12"),
                                total_paid=Decimal("12"), remaining=Decimal("0"),
                                status=InvoiceStatus.PAID)
        self.store.save_monthly_invoice(second)
        
        invoices = self.store.get_monthly_invoices()
        assert len(invoices) == 1
        assert invoices[0].id == "INV-202501"
        assert self.store.get_monthly_invoice(1, 2025).status == InvoiceStatus.PAID
        assert self.store.get_monthly_invoice(2, 2025) is None
        
        assert self.store.delete_monthly_invoice("INV-202501")
        assert self.store.get_monthly_invoices() == []
    
    def test_backend_failure_names_step(self):
        store = LedgerStore(BrokenStorage())
        
        with pytest.raises(StorageError) as exc_info:
            store.save_payment(self.make_payment(1))
        
        assert exc_info.value.step == "save_payment"
        assert isinstance(exc_info.value.__cause__, sqlite3.OperationalError)
    
    def test_next_id_follows_highest_id(self):
        assert self.store.next_id(self.store.loans_table) == 1
        self.store.save_loan(self.make_loan(5))
        self.store.save_loan(self.make_loan(2))
        assert self.store.next_id(self.store.loans_table) == 6
    
    def test_last_account_transaction_is_latest_row(self):
        assert self.store.last_account_transaction() is None
        for balance in ("500", "700"):
            self.store.save_account_transaction(AccountTransaction(
                id=None,
                balance=Decimal(balance),
                transaction_type=TransactionType.DEPOSIT,
                transaction_amount=Decimal("500"),
                description="Deposit",
                date=date(2025, 1, 1)
            ))
        last = self.store.last_account_transaction()
        assert last.id == 2
        assert last.balance == Decimal("700")
    
    def test_corrupt_record_is_not_a_storage_error(self):
        data = self.make_loan(1).to_dict()
        data['interest_rate'] = "not a number"
        self.store.storage.save(self.store.loans_table, "1", data)
        
        with pytest.raises(ValueError) as exc_info:
            self.store.get_loan(1)
        assert not isinstance(exc_info.value, StorageError)
    
    def test_sqlite_store_queries(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            storage = SQLiteStorage(Path(temp_dir) / "ledger.db")
            store = LedgerStore(storage)
            store.save_loan(self.make_loan(4))
            store.save_loan(self.make_loan(9))
            store.save_payment(self.make_payment(1, loan_id=9))
            store.save_payment(self.make_payment(2, loan_id=4))
            
            assert store.next_id(store.loans_table) == 10
            assert [p.id for p in store.get_loan_payments(9)] == [1]
            storage.close()
