"""
Interest Accrual Module

Simple daily interest on outstanding principal, recomputed from a loan's
terms and its ordered payment history. The ``accrued_interest`` stored on a
loan is only a cache; every figure here is derived from history.

Day convention: interest for a window accrues for each day after the window
start through the window end. A payment closes the sub-period on its own
date, so the payment day accrues on the pre-payment principal and the next
sub-period begins the following day.
"""

import time
import uuid
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, List, Optional

from .audit import AuditEventType, AuditTrail
from .config import LedgerConfig, get_config
from .dates import day_before
from .exceptions import ConsistencyError
from .logging_config import get_logger, log_action
from .models import InterestEvent, Loan, Payment
from .money import ZERO, clamp_zero, money_sum, round_money

DAYS_IN_YEAR = 365


def daily_rate(annual_rate_percent: Decimal, days_in_year: int = DAYS_IN_YEAR) -> Decimal:
    """Daily rate for an annual percentage over a fixed-length year"""
    return Decimal(annual_rate_percent) / Decimal(days_in_year) / Decimal(100)


def simple_interest(principal: Decimal, annual_rate_percent: Decimal, days: int,
                    days_in_year: int = DAYS_IN_YEAR) -> Decimal:
    """
    Simple interest: principal x daily rate x days
    
    A non-positive principal is not clamped; callers guard against it.
    """
    if days == 0:
        return ZERO
    return principal * daily_rate(annual_rate_percent, days_in_year) * days


@dataclass(frozen=True)
class PeriodInterest:
    """Interest generated by one loan over a window"""
    interest: Decimal
    days_active: int            # Days in the window carrying a positive principal
    opening_principal: Decimal  # Principal at the window start
    average_balance: Decimal    # Day-weighted principal over the active days
    payments_count: int         # Payments dated inside the window


def _loan_payments(loan: Loan, payments: Iterable[Payment]) -> List[Payment]:
    return sorted((p for p in payments if p.loan_id == loan.id), key=lambda p: (p.date, p.id))


def principal_as_of(loan: Loan, payments: Iterable[Payment], as_of: date) -> Decimal:
    """Original principal less principal repaid by payments dated on or before ``as_of``"""
    repaid = money_sum(p.principal_paid for p in _loan_payments(loan, payments) if p.date <= as_of)
    return clamp_zero(loan.original_principal - repaid)


def remaining_principal(loan: Loan, payments: Iterable[Payment]) -> Decimal:
    """Principal outstanding after the loan's entire payment history"""
    repaid = money_sum(p.principal_paid for p in _loan_payments(loan, payments))
    return clamp_zero(loan.original_principal - repaid)


def interest_between(loan: Loan, payments: Iterable[Payment], start_exclusive: date,
                     end_inclusive: date, days_in_year: int = DAYS_IN_YEAR) -> PeriodInterest:
    """
    Interest a loan generates over the days after ``start_exclusive`` through
    ``end_inclusive``, independent of what has been paid
    
    Args:
        loan: Loan whose terms are used
        payments: Payment history (other loans' payments are ignored)
        start_exclusive: Last day not included in the window
        end_inclusive: Last day included in the window
        days_in_year: Year basis for the daily rate
        
    Returns:
        PeriodInterest for the window
    """
    history = _loan_payments(loan, payments)
    cursor = max(loan.start_date, start_exclusive)
    
    principal = loan.original_principal - money_sum(
        p.principal_paid for p in history if p.date <= cursor
    )
    opening = clamp_zero(principal)
    
    interest = ZERO
    weighted_balance = ZERO
    days_active = 0
    payments_count = 0
    
    def accrue(until: date):
        nonlocal interest, weighted_balance, days_active
        days = (until - cursor).days
        if days > 0 and principal > ZERO:
            interest += simple_interest(principal, loan.interest_rate, days, days_in_year)
            weighted_balance += principal * days
            days_active += days
    
    if end_inclusive > cursor:
        for payment in history:
            if cursor < payment.date <= end_inclusive:
                accrue(payment.date)
                principal -= payment.principal_paid
                cursor = payment.date
                payments_count += 1
        accrue(end_inclusive)
    
    # Payments on the opening day of a loan's first window still belong to it
    if start_exclusive < loan.start_date <= end_inclusive:
        payments_count += sum(1 for p in history if p.date == loan.start_date)
    
    average = weighted_balance / days_active if days_active else ZERO
    return PeriodInterest(
        interest=interest,
        days_active=days_active,
        opening_principal=opening,
        average_balance=average,
        payments_count=payments_count
    )


@dataclass(frozen=True)
class DailyAccrual:
    """One day of a loan's accrual"""
    day: date
    principal: Decimal          # Principal the day accrues on
    interest: Decimal
    payments: List[Payment]     # Payments dated on this day


def daily_accruals(loan: Loan, payments: Iterable[Payment], start_exclusive: date,
                   end_inclusive: date, days_in_year: int = DAYS_IN_YEAR) -> List[DailyAccrual]:
    """
    Day-by-day split of ``interest_between`` over the same window
    
    A day is listed when it carries a positive principal or a payment. The
    payment day accrues on the pre-payment principal; the reduced principal
    applies from the following day.
    """
    history = _loan_payments(loan, payments)
    cursor = max(loan.start_date, start_exclusive)
    principal = loan.original_principal - money_sum(
        p.principal_paid for p in history if p.date <= cursor
    )
    
    rows = []
    day = cursor + timedelta(days=1)
    while day <= end_inclusive:
        paid_today = [p for p in history if p.date == day]
        if principal > ZERO or paid_today:
            interest = (simple_interest(principal, loan.interest_rate, 1, days_in_year)
                        if principal > ZERO else ZERO)
            rows.append(DailyAccrual(day=day, principal=clamp_zero(principal),
                                     interest=interest, payments=paid_today))
        principal -= money_sum(p.principal_paid for p in paid_today)
        day += timedelta(days=1)
    return rows


def accrued_interest_through(loan: Loan, payments: Iterable[Payment], as_of: date,
                             days_in_year: int = DAYS_IN_YEAR) -> Decimal:
    """Total interest generated from the loan start through ``as_of``"""
    if as_of < loan.start_date:
        return ZERO
    return interest_between(loan, payments, loan.start_date, as_of, days_in_year).interest


def outstanding_interest(loan: Loan, payments: Iterable[Payment], as_of: date,
                         days_in_year: int = DAYS_IN_YEAR) -> Decimal:
    """
    Interest owed at ``as_of``: accrued since the start less interest paid by
    payments dated on or before ``as_of``, floored at zero
    """
    history = _loan_payments(loan, payments)
    accrued = accrued_interest_through(loan, history, as_of, days_in_year)
    paid = money_sum(p.interest_paid for p in history if p.date <= as_of)
    return clamp_zero(accrued - paid)


def interest_for_period(loan: Loan, payments: Iterable[Payment], period_start: date,
                        period_end: date, days_in_year: int = DAYS_IN_YEAR) -> PeriodInterest:
    """Interest generated within the closed window [period_start, period_end]"""
    return interest_between(loan, payments, day_before(period_start), period_end, days_in_year)


def last_accrual_point(loan: Loan, payments: Iterable[Payment], as_of: date) -> date:
    """Date of the latest payment on or before ``as_of``, else the loan start"""
    dates = [p.date for p in _loan_payments(loan, payments) if p.date <= as_of]
    return max(dates) if dates else loan.start_date


def make_interest_event_id(loan_id: int) -> str:
    """Millisecond timestamp, short random suffix and loan id"""
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}-{loan_id}"


class InterestAccrualEngine:
    """
    Keeps loan interest caches in line with history
    """
    
    def __init__(self, store, audit_trail: Optional[AuditTrail] = None,
                 config: Optional[LedgerConfig] = None):
        self.store = store
        self.audit_trail = audit_trail
        self.config = config or get_config()
        self.logger = get_logger("loan_ledger.interest")
    
    @property
    def tolerance(self) -> Decimal:
        return self.config.settlement_tolerance
    
    def outstanding(self, loan: Loan, as_of: date) -> Decimal:
        """Outstanding interest for a stored loan, read from its stored history"""
        payments = self.store.get_loan_payments(loan.id)
        return outstanding_interest(loan, payments, as_of, self.config.days_in_year)
    
    def check_cache(self, loan: Loan, payments: Iterable[Payment]) -> List[ConsistencyError]:
        """
        Compare a loan's cached balances with values recomputed from history
        
        Drift beyond the settlement tolerance is logged and returned; the
        recomputed value is authoritative.
        
        Returns:
            ConsistencyError per drifting field (empty when consistent)
        """
        history = _loan_payments(loan, payments)
        drift = []
        
        expected_principal = remaining_principal(loan, history)
        if abs(expected_principal - loan.remaining_principal) > self.tolerance:
            drift.append(ConsistencyError("loan", loan.id, "remaining_principal",
                                          loan.remaining_principal, expected_principal))
        
        if loan.last_interest_accrual is not None:
            expected_interest = outstanding_interest(
                loan, history, loan.last_interest_accrual, self.config.days_in_year
            )
            if abs(expected_interest - loan.accrued_interest) > self.tolerance:
                drift.append(ConsistencyError("loan", loan.id, "accrued_interest",
                                              loan.accrued_interest, round_money(expected_interest)))
        
        for error in drift:
            log_action(self.logger, "warning", error.message,
                       action="check_cache", resource=f"loan:{loan.id}", extra=error.details)
            if self.audit_trail:
                self.audit_trail.log_event(
                    AuditEventType.CONSISTENCY_DRIFT_DETECTED, "loan", loan.id, error.details
                )
        return drift
    
    def run_daily_accrual(self, today: date) -> List[InterestEvent]:
        """
        Bring every open loan's interest cache up to ``today``
        
        Emits one InterestEvent per loan for the interest generated since its
        last accrual point. Loans already accrued today are skipped, so
        running twice on the same day is a no-op.
        
        Args:
            today: Accrual date
            
        Returns:
            The InterestEvents written
        """
        events = []
        days_in_year = self.config.days_in_year
        
        with self.store.atomic():
            for loan in self.store.get_loans():
                if not loan.is_open or loan.start_date > today:
                    continue
                if loan.last_interest_accrual is not None and loan.last_interest_accrual >= today:
                    continue
                
                payments = self.store.get_loan_payments(loan.id)
                self.check_cache(loan, payments)
                since = loan.last_interest_accrual or loan.start_date
                generated = interest_between(loan, payments, since, today, days_in_year).interest
                outstanding = outstanding_interest(loan, payments, today, days_in_year)
                
                event = InterestEvent(
                    id=make_interest_event_id(loan.id),
                    loan_id=loan.id,
                    date=today,
                    amount=generated,
                    days=(today - since).days,
                    principal=principal_as_of(loan, payments, today),
                    description=f"Daily accrual for loan {loan.loan_number}"
                )
                self.store.save_interest_event(event)
                self.store.update_loan(loan.id, {
                    'accrued_interest': outstanding,
                    'remaining_principal': remaining_principal(loan, payments),
                    'last_interest_accrual': today
                })
                events.append(event)
                
                if self.audit_trail:
                    self.audit_trail.log_event(
                        AuditEventType.INTEREST_ACCRUED, "loan", loan.id,
                        {'amount': generated, 'outstanding': outstanding, 'date': today}
                    )
        
        log_action(self.logger, "info", f"Daily accrual posted for {len(events)} loans",
                   action="run_daily_accrual", extra={'date': today.isoformat(),
                                                      'loans': [e.loan_id for e in events]})
        return events
