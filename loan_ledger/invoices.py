"""
Monthly Reconciliation Module

Recomputes, for a calendar month, the interest generated across all loans,
the interest paid by payments dated in the month and the cumulative interest
still outstanding at month end, and persists the result as an idempotent
``MonthlyInvoice`` keyed by (month, year).

The two figures reported side by side are deliberately different:
``total_accrued`` is generated strictly within the month, while
``remaining`` is the cumulative unpaid interest at month end.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .audit import AuditEventType, AuditTrail
from .config import LedgerConfig, get_config
from .dates import DateLike, day_before, iter_months, last_completed_month, month_bounds, parse_date
from .exceptions import NotFoundError
from .interest import DAYS_IN_YEAR, daily_accruals, interest_between, outstanding_interest
from .logging_config import get_logger, log_action
from .models import InvoiceStatus, Loan, MonthlyInvoice, Payment
from .money import EPSILON, ZERO, money_sum, round_money

Period = Tuple[int, int]


@dataclass
class MonthlyCalculation:
    """Rounded totals and snapshots for one month"""
    month: int
    year: int
    total_accrued: Decimal = ZERO
    total_paid: Decimal = ZERO
    remaining: Decimal = ZERO
    loan_details: List[Dict[str, Any]] = field(default_factory=list)
    payments_in_month: List[Dict[str, Any]] = field(default_factory=list)
    daily_breakdown: List[Dict[str, Any]] = field(default_factory=list)


def invoice_status(total_accrued: Decimal, total_paid: Decimal, remaining: Decimal,
                   tolerance: Decimal = EPSILON) -> InvoiceStatus:
    """Paid when nothing remains, Partial when something was paid, else Pending"""
    if remaining <= tolerance:
        return InvoiceStatus.PAID
    if total_paid > tolerance:
        return InvoiceStatus.PARTIAL
    return InvoiceStatus.PENDING


def calculate_month(month: int, year: int, loans: Iterable[Loan], payments: Iterable[Payment],
                    days_in_year: int = DAYS_IN_YEAR, places: int = 2) -> MonthlyCalculation:
    """
    Reconcile one month from loan terms and payment history
    
    Every loan started on or before the month end takes part. Its window
    opens at the later of its start date and the month start; principal at
    the window start is rebuilt from earlier payments and each in-month
    payment closes a sub-period. Totals accumulate in full precision and are
    rounded once at the end.
    
    Args:
        month: Month (1-12)
        year: Year
        loans: All loans
        payments: All payments
        days_in_year: Year basis for the daily rate
        places: Decimal places of the rounded totals
        
    Returns:
        MonthlyCalculation with rounded totals
    """
    month_start, month_end = month_bounds(month, year)
    loans = sorted(loans, key=lambda loan: loan.id)
    payments = sorted(payments, key=lambda p: (p.date, p.id))
    known_loans = {loan.id for loan in loans}
    in_month = [p for p in payments
                if month_start <= p.date <= month_end and p.loan_id in known_loans]
    
    total_accrued = ZERO
    remaining = ZERO
    details = []
    daily_rows = []
    
    for loan in loans:
        if loan.start_date > month_end:
            continue
        
        period = interest_between(loan, payments, day_before(month_start), month_end, days_in_year)
        loan_payments = [p for p in in_month if p.loan_id == loan.id]
        total_accrued += period.interest
        remaining += outstanding_interest(loan, payments, month_end, days_in_year)
        
        if period.interest > ZERO or loan_payments:
            details.append({
                'loan_id': loan.id,
                'loan_number': loan.loan_number,
                'debtor_name': loan.debtor_name,
                'principal': str(round_money(period.opening_principal, places)),
                'interest_rate': str(loan.interest_rate),
                'days_in_month': period.days_active,
                'average_balance': str(round_money(period.average_balance, places)),
                'total_interest': str(round_money(period.interest, places)),
                'payments_count': len(loan_payments)
            })
        
        # Daily figures stay unrounded so they add up to the month's total
        for accrual in daily_accruals(loan, payments, day_before(month_start), month_end,
                                      days_in_year):
            daily_rows.append({
                'date': accrual.day.isoformat(),
                'loan_id': loan.id,
                'loan_number': loan.loan_number,
                'principal': str(accrual.principal),
                'daily_interest': str(accrual.interest),
                'payment': str(money_sum(p.total_paid for p in accrual.payments)),
                'interest_paid': str(money_sum(p.interest_paid for p in accrual.payments))
            })
    
    total_paid = ZERO
    payment_rows = []
    for payment in in_month:
        total_paid += payment.interest_paid
        payment_rows.append({
            'payment_id': payment.id,
            'loan_id': payment.loan_id,
            'date': payment.date.isoformat(),
            'total_paid': str(payment.total_paid),
            'interest_paid': str(payment.interest_paid),
            'principal_paid': str(payment.principal_paid)
        })
    
    return MonthlyCalculation(
        month=month,
        year=year,
        total_accrued=round_money(total_accrued, places),
        total_paid=round_money(total_paid, places),
        remaining=round_money(remaining, places),
        loan_details=details,
        payments_in_month=payment_rows,
        daily_breakdown=daily_rows
    )


class ReconciliationEngine:
    """
    Generates, regenerates and audits monthly invoices
    """
    
    def __init__(self, store, audit_trail: Optional[AuditTrail] = None,
                 config: Optional[LedgerConfig] = None):
        self.store = store
        self.audit_trail = audit_trail
        self.config = config or get_config()
        self.logger = get_logger("loan_ledger.invoices")
    
    def _calculate(self, month: int, year: int, loans, payments) -> MonthlyCalculation:
        return calculate_month(month, year, loans, payments,
                               self.config.days_in_year, self.config.money_places)
    
    def _persist(self, calc: MonthlyCalculation, today: date) -> MonthlyInvoice:
        existing = self.store.get_monthly_invoice(calc.month, calc.year)
        now = datetime.now(timezone.utc)
        invoice = MonthlyInvoice(
            month=calc.month,
            year=calc.year,
            total_accrued=calc.total_accrued,
            total_paid=calc.total_paid,
            remaining=calc.remaining,
            status=invoice_status(calc.total_accrued, calc.total_paid, calc.remaining,
                                  self.config.settlement_tolerance),
            generated_date=existing.generated_date if existing else today,
            last_updated=today,
            loan_details=calc.loan_details,
            payments_in_month=calc.payments_in_month,
            daily_breakdown=calc.daily_breakdown,
            created_at=existing.created_at if existing else now,
            updated_at=now
        )
        self.store.save_monthly_invoice(invoice)
        
        if self.audit_trail:
            self.audit_trail.log_event(
                AuditEventType.INVOICE_GENERATED, "invoice", invoice.id,
                {'total_accrued': invoice.total_accrued, 'total_paid': invoice.total_paid,
                 'remaining': invoice.remaining, 'status': invoice.status}
            )
        log_action(self.logger, "debug", f"Invoice {invoice.id} generated",
                   action="generate_invoice", resource=f"invoice:{invoice.id}",
                   extra={'status': invoice.status.value, 'remaining': str(invoice.remaining)})
        return invoice
    
    def generate_invoice(self, month: int, year: int, today: DateLike) -> MonthlyInvoice:
        """
        Create or refresh the invoice for one month
        
        Regenerating with unchanged loans and payments yields identical
        totals. An existing invoice keeps its ``generated_date``.
        """
        today = parse_date(today, "today")
        calc = self._calculate(month, year, self.store.get_loans(), self.store.get_payments())
        return self._persist(calc, today)
    
    def generate_range(self, start: Period, end: Period, today: DateLike,
                       skip_existing: bool = False) -> List[MonthlyInvoice]:
        """
        Generate every month from ``start`` through ``end`` (inclusive)
        
        Each month is persisted as soon as it is computed, so an interrupted
        run can simply be repeated.
        
        Args:
            start: (month, year) of the first month
            end: (month, year) of the last month
            today: Current date
            skip_existing: Leave months that already have an invoice untouched
        """
        today = parse_date(today, "today")
        loans = self.store.get_loans()
        payments = self.store.get_payments()
        
        invoices = []
        for month, year in iter_months(start, end):
            if skip_existing and self.store.get_monthly_invoice(month, year) is not None:
                continue
            invoices.append(self._persist(self._calculate(month, year, loans, payments), today))
        return invoices
    
    def regenerate_affected(self, change_date: DateLike, today: DateLike,
                            force_current: bool = False) -> List[MonthlyInvoice]:
        """
        Regenerate invoices from the month of a change through the last
        fully elapsed month
        
        Args:
            change_date: Date of the loan or payment that changed
            today: Current date
            force_current: Also regenerate the month in progress
        """
        change_date = parse_date(change_date, "change date")
        today = parse_date(today, "today")
        end = (today.month, today.year) if force_current else last_completed_month(today)
        start = (change_date.month, change_date.year)
        if (start[1], start[0]) > (end[1], end[0]):
            return []
        
        invoices = self.generate_range(start, end, today)
        log_action(self.logger, "info", f"Regenerated {len(invoices)} invoices",
                   action="regenerate_affected",
                   extra={'from': f"{start[1]}-{start[0]:02d}", 'to': f"{end[1]}-{end[0]:02d}"})
        return invoices
    
    def _history_span(self, today: date) -> Optional[Tuple[Period, Period]]:
        loans = self.store.get_loans()
        if not loans:
            return None
        earliest = min(loan.start_date for loan in loans)
        start = (earliest.month, earliest.year)
        end = last_completed_month(today)
        if (start[1], start[0]) > (end[1], end[0]):
            return None
        return start, end
    
    def generate_all(self, today: DateLike, force: bool = False) -> List[MonthlyInvoice]:
        """
        Backfill invoices from the earliest loan's start month through the
        last fully elapsed month
        
        Args:
            today: Current date
            force: Recompute months that already have an invoice
            
        Returns:
            Invoices written by this run
        """
        today = parse_date(today, "today")
        span = self._history_span(today)
        if span is None:
            return []
        invoices = self.generate_range(span[0], span[1], today, skip_existing=not force)
        log_action(self.logger, "info", f"Backfill wrote {len(invoices)} invoices",
                   action="generate_all", extra={'force': force})
        return invoices
    
    def generation_status(self, today: DateLike) -> Dict[str, Any]:
        """Which historical months have an invoice and which are missing"""
        today = parse_date(today, "today")
        span = self._history_span(today)
        if span is None:
            return {'total_months': 0, 'generated': 0, 'missing': [], 'percentage': 100.0}
        
        existing = {(inv.month, inv.year) for inv in self.store.get_monthly_invoices()}
        months = list(iter_months(*span))
        missing = [{'month': m, 'year': y} for m, y in months if (m, y) not in existing]
        generated = len(months) - len(missing)
        return {
            'total_months': len(months),
            'generated': generated,
            'missing': missing,
            'percentage': round(generated / len(months) * 100, 1)
        }
    
    def validate_invoice(self, invoice: MonthlyInvoice) -> Dict[str, Any]:
        """
        Compare a stored invoice with a fresh recomputation
        
        Returns:
            ``valid`` flag and, per differing total, the stored and expected values
        """
        calc = self._calculate(invoice.month, invoice.year,
                               self.store.get_loans(), self.store.get_payments())
        differences = {}
        for name in ('total_accrued', 'total_paid', 'remaining'):
            stored = getattr(invoice, name)
            expected = getattr(calc, name)
            if abs(stored - expected) > self.config.settlement_tolerance:
                differences[name] = {'stored': str(stored), 'expected': str(expected)}
        
        if differences:
            log_action(self.logger, "warning", f"Invoice {invoice.id} is stale",
                       action="validate_invoice", resource=f"invoice:{invoice.id}",
                       extra=differences)
        return {'valid': not differences, 'invoice_id': invoice.id, 'differences': differences}
    
    def get_invoice(self, month: int, year: int) -> Optional[MonthlyInvoice]:
        month_bounds(month, year)
        return self.store.get_monthly_invoice(month, year)
    
    def list_invoices(self, unpaid_only: bool = False) -> List[MonthlyInvoice]:
        invoices = self.store.get_monthly_invoices()
        if unpaid_only:
            invoices = [inv for inv in invoices if inv.status != InvoiceStatus.PAID]
        return invoices
    
    def delete_invoice(self, invoice_id: str) -> None:
        if not self.store.delete_monthly_invoice(invoice_id):
            raise NotFoundError("invoice", invoice_id)
