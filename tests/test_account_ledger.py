"""
Test suite for the account balance ledger

The stored running balance of every row must agree with a summation of the
signed amounts appended so far.
"""

import pytest
from decimal import Decimal
from datetime import date

from loan_ledger.account_ledger import AccountLedger
from loan_ledger.audit import AuditTrail, AuditEventType
from loan_ledger.exceptions import ValidationError
from loan_ledger.models import TransactionType
from loan_ledger.money import ZERO
from loan_ledger.storage import InMemoryStorage
from loan_ledger.store import LedgerStore


class TestAccountLedger:
    """Test running-balance bookkeeping"""
    
    def setup_method(self):
        self.storage = InMemoryStorage()
        self.store = LedgerStore(self.storage)
        self.audit_trail = AuditTrail(self.storage)
        self.ledger = AccountLedger(self.store, self.audit_trail)
    
    def test_empty_ledger(self):
        assert self.ledger.current_balance() == ZERO
        assert self.ledger.transactions() == []
        assert self.ledger.verify_running_balance()['valid']
    
    def test_first_deposit_becomes_initial(self):
        row = self.ledger.deposit("1000", "2025-01-01")
        
        assert row.transaction_type == TransactionType.INITIAL
        assert row.balance == Decimal("1000")
        assert row.transaction_amount == Decimal("1000")
        assert row.id == 1
    
    def test_later_deposits_stay_deposits(self):
        self.ledger.deposit("1000", "2025-01-01")
        row = self.ledger.deposit("250.50", "2025-01-02")
        
        assert row.transaction_type == TransactionType.DEPOSIT
        assert row.balance == Decimal("1250.50")
    
    def test_outflows_are_negative(self):
        self.ledger.deposit("1000", "2025-01-01")
        
        withdrawal = self.ledger.withdraw("300", "2025-01-02")
        loan_out = self.ledger.record_transaction(TransactionType.LOAN_OUT, "500",
                                                  "Loan 01", "2025-01-03", related_loan_id=1)
        
        assert withdrawal.transaction_amount == Decimal("-300")
        assert loan_out.transaction_amount == Decimal("-500")
        assert loan_out.related_loan_id == 1
        assert self.ledger.current_balance() == Decimal("200")
    
    def test_first_row_of_other_type_is_not_relabelled(self):
        row = self.ledger.record_transaction("loan_out", "500", "Loan 01", "2025-01-01")
        assert row.transaction_type == TransactionType.LOAN_OUT
        assert row.balance == Decimal("-500")
    
    def test_payment_in_increases_balance(self):
        self.ledger.record_transaction(TransactionType.PAYMENT_IN, "410.96", "Payment",
                                       date(2025, 1, 11))
        assert self.ledger.current_balance() == Decimal("410.96")
    
    def test_withdrawal_cannot_exceed_balance(self):
        self.ledger.deposit("100", "2025-01-01")
        
        with pytest.raises(ValidationError) as exc_info:
            self.ledger.withdraw("100.01", "2025-01-02")
        
        assert exc_info.value.details['requested'] == "100.01"
        assert len(self.ledger.transactions()) == 1
    
    @pytest.mark.parametrize("amount", ["0", "-10", "ten"])
    def test_rejects_non_positive_amounts(self, amount):
        with pytest.raises(ValidationError):
            self.ledger.deposit(amount, "2025-01-01")
    
    def test_rejects_unknown_type(self):
        with pytest.raises(ValueError):
            self.ledger.record_transaction("transfer", "10", "?", "2025-01-01")
    
    def test_transactions_ordered_by_date(self):
        self.ledger.deposit("100", "2025-02-01")
        self.ledger.deposit("50", "2025-01-15")
        
        rows = self.ledger.transactions()
        
        assert [r.date for r in rows] == [date(2025, 1, 15), date(2025, 2, 1)]
        # The balance is that of the last appended row, not the latest date
        assert self.ledger.current_balance() == Decimal("150")
    
    def test_running_balance_matches_summation(self):
        self.ledger.deposit("1000", "2025-01-01")
        self.ledger.withdraw("200", "2025-01-02")
        self.ledger.record_transaction(TransactionType.LOAN_OUT, "700", "Loan", "2025-01-03")
        self.ledger.record_transaction(TransactionType.PAYMENT_IN, "55.55", "Pay", "2025-01-04")
        
        result = self.ledger.verify_running_balance()
        
        assert result['valid']
        assert result['summed_balance'] == result['cached_balance'] == Decimal("155.55")
    
    def test_running_balance_detects_tampering(self):
        self.ledger.deposit("1000", "2025-01-01")
        self.ledger.deposit("10", "2025-01-02")
        record = self.storage.load(self.store.transactions_table, "2")
        record['balance'] = "9999"
        self.storage.save(self.store.transactions_table, "2", record)
        
        result = self.ledger.verify_running_balance()
        
        assert not result['valid']
        assert result['mismatches'] == [2]
    
    def test_rows_are_audited(self):
        row = self.ledger.deposit("1000", "2025-01-01")
        events = self.audit_trail.get_events_for_entity("account_transaction", row.id)
        assert events[0].event_type == AuditEventType.ACCOUNT_TRANSACTION_RECORDED
