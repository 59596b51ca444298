"""
Test suite for interest accrual

Interest is always recomputed from the loan terms and its payment history;
tests cover the day convention, sub-period splitting at payments and the
accrual engine that maintains the cached values.
"""

import pytest
from decimal import Decimal
from datetime import date

from loan_ledger.audit import AuditTrail, AuditEventType
from loan_ledger.config import LedgerConfig
from loan_ledger.interest import (
    InterestAccrualEngine, interest_between, interest_for_period, accrued_interest_through,
    outstanding_interest, principal_as_of, remaining_principal, last_accrual_point
)
from loan_ledger.models import Loan, Payment
from loan_ledger.money import round_money, ZERO
from loan_ledger.storage import InMemoryStorage
from loan_ledger.store import LedgerStore


def make_loan(loan_id=1, principal="100000", rate="15", start=date(2025, 1, 1)):
    return Loan(
        id=loan_id,
        debtor_name="Alice",
        original_principal=Decimal(principal),
        remaining_principal=Decimal(principal),
        interest_rate=Decimal(rate),
        start_date=start
    )


def make_payment(payment_id, loan_id, when, interest, principal):
    interest = Decimal(interest)
    principal = Decimal(principal)
    return Payment(
        id=payment_id,
        loan_id=loan_id,
        date=when,
        total_paid=interest + principal,
        interest_paid=interest,
        principal_paid=principal
    )


class TestAccruedInterest:
    """Test interest generated since the loan start"""
    
    def test_ten_days_reference_scenario(self):
        loan = make_loan()
        interest = accrued_interest_through(loan, [], date(2025, 1, 11))
        assert round_money(interest) == Decimal("410.96")
    
    def test_before_start_is_zero(self):
        loan = make_loan()
        assert accrued_interest_through(loan, [], date(2024, 12, 31)) == ZERO
        assert outstanding_interest(loan, [], date(2024, 12, 31)) == ZERO
    
    def test_start_day_accrues_nothing(self):
        loan = make_loan()
        assert accrued_interest_through(loan, [], date(2025, 1, 1)) == ZERO
    
    def test_zero_rate_accrues_nothing(self):
        loan = make_loan(rate="0")
        assert accrued_interest_through(loan, [], date(2025, 6, 1)) == ZERO


class TestOutstandingInterest:
    """Test interest owed at a date"""
    
    def setup_method(self):
        self.loan = make_loan()
        self.payments = [make_payment(1, 1, date(2025, 1, 11), "410.96", "89.04")]
    
    def test_payment_settles_interest_to_date(self):
        assert outstanding_interest(self.loan, self.payments, date(2025, 1, 11)) == ZERO
    
    def test_interest_resumes_on_reduced_principal(self):
        # 10 more days on 99910.96 at 15%
        owed = outstanding_interest(self.loan, self.payments, date(2025, 1, 21))
        assert round_money(owed) == Decimal("410.59")
    
    def test_payments_after_the_date_are_ignored(self):
        owed = outstanding_interest(self.loan, self.payments, date(2025, 1, 10))
        assert round_money(owed) == round_money(
            accrued_interest_through(self.loan, [], date(2025, 1, 10))
        )
    
    def test_other_loans_payments_are_ignored(self):
        other = make_payment(2, 2, date(2025, 1, 5), "100", "5000")
        owed = outstanding_interest(self.loan, [other], date(2025, 1, 11))
        assert round_money(owed) == Decimal("410.96")
    
    def test_never_negative(self):
        overpaid = [make_payment(1, 1, date(2025, 1, 11), "500", "0")]
        assert outstanding_interest(self.loan, overpaid, date(2025, 1, 12)) == ZERO


class TestPrincipalReplay:
    """Test principal reconstruction from payment history"""
    
    def setup_method(self):
        self.loan = make_loan()
        self.payments = [
            make_payment(1, 1, date(2025, 1, 11), "410.96", "50000"),
            make_payment(2, 1, date(2025, 2, 1), "100", "20000"),
        ]
    
    def test_principal_as_of(self):
        assert principal_as_of(self.loan, self.payments, date(2025, 1, 10)) == Decimal("100000")
        assert principal_as_of(self.loan, self.payments, date(2025, 1, 11)) == Decimal("50000")
        assert principal_as_of(self.loan, self.payments, date(2025, 3, 1)) == Decimal("30000")
    
    def test_remaining_principal_uses_all_payments(self):
        assert remaining_principal(self.loan, self.payments) == Decimal("30000")
    
    def test_last_accrual_point(self):
        assert last_accrual_point(self.loan, self.payments, date(2025, 1, 5)) == date(2025, 1, 1)
        assert last_accrual_point(self.loan, self.payments, date(2025, 1, 20)) == date(2025, 1, 11)
    
    def test_remaining_principal_monotonic(self):
        previous = self.loan.original_principal
        for payment in self.payments:
            current = principal_as_of(self.loan, self.payments, payment.date)
            assert current <= previous
            assert current >= ZERO
            previous = current


class TestPeriodInterest:
    """Test interest generated inside a bounded window"""
    
    def test_first_month_excludes_start_day(self):
        period = interest_for_period(make_loan(), [], date(2025, 1, 1), date(2025, 1, 31))
        assert round_money(period.interest) == Decimal("1232.88")
        assert period.days_active == 30
        assert period.opening_principal == Decimal("100000")
        assert period.average_balance == Decimal("100000")
    
    def test_full_month(self):
        period = interest_for_period(make_loan(), [], date(2025, 2, 1), date(2025, 2, 28))
        assert round_money(period.interest) == Decimal("1150.68")
        assert period.days_active == 28
    
    def test_months_add_up_to_total_accrual(self):
        loan = make_loan()
        payments = [make_payment(1, 1, date(2025, 1, 20), "100", "30000")]
        january = interest_for_period(loan, payments, date(2025, 1, 1), date(2025, 1, 31))
        february = interest_for_period(loan, payments, date(2025, 2, 1), date(2025, 2, 28))
        total = accrued_interest_through(loan, payments, date(2025, 2, 28))
        assert abs(january.interest + february.interest - total) < Decimal("1e-9")
    
    def test_payment_splits_the_window(self):
        loan = make_loan()
        payments = [make_payment(1, 1, date(2025, 1, 11), "410.96", "50000")]
        period = interest_for_period(loan, payments, date(2025, 1, 1), date(2025, 1, 31))
        # 10 days on 100000 then 20 days on 50000
        assert round_money(period.interest) == Decimal("821.92")
        assert period.payments_count == 1
        assert period.average_balance == (Decimal("100000") * 10 + Decimal("50000") * 20) / 30
    
    def test_multiple_payments_in_one_window(self):
        loan = make_loan(principal="36500", rate="10")
        payments = [
            make_payment(1, 1, date(2025, 1, 11), "0", "10000"),
            make_payment(2, 1, date(2025, 1, 21), "0", "10000"),
        ]
        period = interest_between(loan, payments, date(2025, 1, 1), date(2025, 1, 31))
        # Daily interest of 10, 7.26.. and 4.52.. for 10 days each
        expected = (Decimal("36500") + Decimal("26500") + Decimal("16500")) * Decimal("10") / Decimal("36500") * 10
        assert abs(period.interest - expected) < Decimal("1e-9")
        assert period.payments_count == 2
    
    def test_settled_loan_accrues_nothing_afterwards(self):
        loan = make_loan()
        payments = [make_payment(1, 1, date(2025, 1, 11), "410.96", "100000")]
        period = interest_for_period(loan, payments, date(2025, 2, 1), date(2025, 2, 28))
        assert period.interest == ZERO
        assert period.days_active == 0
        assert period.opening_principal == ZERO
        assert outstanding_interest(loan, payments, date(2025, 3, 1)) == ZERO
    
    def test_window_before_start_is_empty(self):
        loan = make_loan(start=date(2025, 3, 10))
        period = interest_for_period(loan, [], date(2025, 2, 1), date(2025, 2, 28))
        assert period.interest == ZERO
        assert period.days_active == 0


class TestInterestAccrualEngine:
    """Test the daily accrual job and cache drift detection"""
    
    def setup_method(self):
        self.storage = InMemoryStorage()
        self.store = LedgerStore(self.storage)
        self.audit_trail = AuditTrail(self.storage)
        self.engine = InterestAccrualEngine(
            self.store, self.audit_trail, LedgerConfig(storage_backend="memory")
        )
        self.store.save_loan(make_loan())
    
    def test_daily_accrual_updates_cache(self):
        events = self.engine.run_daily_accrual(date(2025, 1, 11))
        
        assert len(events) == 1
        event = events[0]
        assert event.loan_id == 1
        assert event.days == 10
        assert event.principal == Decimal("100000")
        assert round_money(event.amount) == Decimal("410.96")
        assert event.id.endswith("-1")
        
        loan = self.store.get_loan(1)
        assert round_money(loan.accrued_interest) == Decimal("410.96")
        assert loan.last_interest_accrual == date(2025, 1, 11)
        assert len(self.store.get_interest_events(1)) == 1
    
    def test_daily_accrual_is_idempotent_per_day(self):
        self.engine.run_daily_accrual(date(2025, 1, 11))
        assert self.engine.run_daily_accrual(date(2025, 1, 11)) == []
        assert len(self.store.get_interest_events()) == 1
    
    def test_consecutive_accruals_cover_only_new_days(self):
        self.engine.run_daily_accrual(date(2025, 1, 11))
        events = self.engine.run_daily_accrual(date(2025, 1, 12))
        assert events[0].days == 1
        assert round_money(events[0].amount) == Decimal("41.10")
        loan = self.store.get_loan(1)
        assert round_money(loan.accrued_interest) == Decimal("452.05")
    
    def test_skips_paid_and_future_loans(self):
        self.store.save_loan(make_loan(loan_id=2, start=date(2025, 2, 1)))
        events = self.engine.run_daily_accrual(date(2025, 1, 11))
        assert [e.loan_id for e in events] == [1]
    
    def test_check_cache_consistent(self):
        self.engine.run_daily_accrual(date(2025, 1, 11))
        loan = self.store.get_loan(1)
        assert self.engine.check_cache(loan, []) == []
    
    def test_check_cache_reports_drift(self):
        self.engine.run_daily_accrual(date(2025, 1, 11))
        loan = self.store.update_loan(1, {'accrued_interest': Decimal("999")})
        
        drift = self.engine.check_cache(loan, [])
        
        assert len(drift) == 1
        assert drift[0].details['field'] == 'accrued_interest'
        assert drift[0].details['recomputed'] == "410.96"
        events = self.audit_trail.get_events_by_type(AuditEventType.CONSISTENCY_DRIFT_DETECTED)
        assert len(events) == 1
    
    def test_check_cache_reports_principal_drift(self):
        loan = self.store.update_loan(1, {'remaining_principal': Decimal("5")})
        drift = self.engine.check_cache(loan, [])
        assert [d.details['field'] for d in drift] == ['remaining_principal']
