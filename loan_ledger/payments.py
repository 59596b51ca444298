"""
Payment Allocation Module

Applies a payment across open loans in ascending id order, interest first
and then principal. Allocation is a pure fold producing a ``PaymentPlan``;
``PaymentProcessor`` commits a plan in one storage transaction.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from .audit import AuditEventType, AuditTrail
from .config import LedgerConfig, get_config
from .dates import DateLike, parse_date
from .exceptions import LedgerError, NotFoundError, ValidationError
from .interest import (
    DAYS_IN_YEAR, InterestAccrualEngine, last_accrual_point, make_interest_event_id,
    outstanding_interest, principal_as_of, remaining_principal
)
from .logging_config import get_logger, log_action
from .models import InterestEvent, Loan, LoanStatus, Payment, TransactionType
from .money import (
    EPSILON, ZERO, Number, clamp_zero, money_sum, round_down_money, to_decimal
)
from .result import Result


@dataclass(frozen=True)
class LoanAllocation:
    """The share of a payment applied to one loan and the loan state it leads to"""
    loan: Loan
    outstanding_interest: Decimal   # Interest owed at the payment date, before payment
    interest_days: int              # Days since the last accrual point
    interest_basis: Decimal         # Principal the interest was computed on
    interest_paid: Decimal
    principal_paid: Decimal
    total_paid: Decimal
    new_remaining_principal: Decimal
    new_accrued_interest: Decimal
    new_status: LoanStatus


@dataclass(frozen=True)
class PaymentPlan:
    amount: Decimal
    payment_date: date
    allocations: Tuple[LoanAllocation, ...]
    total_debt: Decimal
    later_payment_loans: Tuple[int, ...] = ()   # Allocated loans with later-dated payments
    
    @property
    def loan_ids(self) -> List[int]:
        return [a.loan.id for a in self.allocations]


def _owed(loan: Loan, payments: List[Payment], as_of: date, days_in_year: int):
    principal = remaining_principal(loan, payments)
    interest = outstanding_interest(loan, payments, as_of, days_in_year)
    return principal, interest


def allocate_payment(amount: Number, payment_date: DateLike, loans: Iterable[Loan],
                     payments: Iterable[Payment], today: DateLike,
                     loan_id: Optional[int] = None, tolerance: Decimal = EPSILON,
                     days_in_year: int = DAYS_IN_YEAR) -> PaymentPlan:
    """
    Work out how a payment is split across loans without touching storage
    
    Candidates are the open loans in ascending id order; each is settled
    (interest, then principal) before the next receives funds. With
    ``loan_id`` only that loan is a candidate, and it is refused while a
    lower-id open loan still owes more than the tolerance. Balances are
    recomputed from payment history, never read from the loan cache.
    
    Args:
        amount: Payment amount
        payment_date: Date the payment was made
        loans: All loans
        payments: All recorded payments
        today: Current date; payments may not be dated after it
        loan_id: Restrict the payment to one loan
        tolerance: Settlement tolerance
        days_in_year: Year basis for the daily rate
        
    Returns:
        PaymentPlan with one LoanAllocation per loan receiving funds
        
    Raises:
        ValidationError: If the payment breaks a business rule
        NotFoundError: If ``loan_id`` does not exist
    """
    try:
        amount = to_decimal(amount)
    except ValueError:
        raise ValidationError(f"Invalid payment amount: {amount!r}", {'amount': str(amount)})
    if amount <= ZERO:
        raise ValidationError("Payment amount must be positive", {'amount': str(amount)})
    
    payment_date = parse_date(payment_date, "payment date")
    today = parse_date(today, "today")
    if payment_date > today:
        raise ValidationError(
            f"Payment date {payment_date} cannot be in the future",
            {'payment_date': payment_date.isoformat(), 'today': today.isoformat()}
        )
    
    loans = sorted(loans, key=lambda loan: loan.id)
    payments = list(payments)
    open_loans = [loan for loan in loans if loan.is_open]
    if not open_loans:
        raise ValidationError("There are no open loans to apply the payment to")
    
    if loan_id is None:
        candidates = open_loans
    else:
        target = next((loan for loan in loans if loan.id == loan_id), None)
        if target is None:
            raise NotFoundError("loan", loan_id)
        if not target.is_open:
            raise ValidationError(f"Loan {target.loan_number} is already paid",
                                  {'loan_id': loan_id})
        for earlier in open_loans:
            if earlier.id >= loan_id:
                break
            principal, interest = _owed(earlier, payments, payment_date, days_in_year)
            if principal + interest > tolerance:
                raise ValidationError(
                    f"Loan {earlier.loan_number} must be settled before loan "
                    f"{target.loan_number} can receive payments",
                    {'blocking_loan_id': earlier.id, 'loan_id': loan_id}
                )
        candidates = [target]
    
    balances = [(loan,) + _owed(loan, payments, payment_date, days_in_year) for loan in candidates]
    total_debt = money_sum(principal + interest for _, principal, interest in balances)
    if amount > total_debt:
        max_allowed = round_down_money(total_debt)
        raise ValidationError(
            f"Payment of {amount} exceeds the total debt; at most {max_allowed} can be paid",
            {'amount': str(amount), 'max_allowed': str(max_allowed)}
        )
    
    allocations = []
    left = amount
    for loan, principal, interest in balances:
        if left <= ZERO:
            break
        owed = principal + interest
        if owed <= ZERO:
            continue
        if payment_date < loan.start_date:
            raise ValidationError(
                f"Payment date {payment_date} is before loan {loan.loan_number} "
                f"started on {loan.start_date}",
                {'loan_id': loan.id, 'loan_number': loan.loan_number,
                 'start_date': loan.start_date.isoformat()}
            )
        
        applied = min(left, owed)
        interest_paid = min(applied, interest)
        principal_paid = applied - interest_paid
        
        new_principal = clamp_zero(principal - principal_paid)
        new_interest = clamp_zero(interest - interest_paid)
        allocations.append(LoanAllocation(
            loan=loan,
            outstanding_interest=interest,
            interest_days=(payment_date - last_accrual_point(loan, payments, payment_date)).days,
            interest_basis=principal_as_of(loan, payments, payment_date),
            interest_paid=interest_paid,
            principal_paid=principal_paid,
            total_paid=applied,
            new_remaining_principal=new_principal,
            new_accrued_interest=new_interest,
            new_status=Loan.status_for(new_principal, new_interest, tolerance)
        ))
        left -= applied
    
    if not allocations:
        raise ValidationError("Nothing is owed on the selected loans", {'amount': str(amount)})

    allocated = {a.loan.id for a in allocations}
    later = sorted({p.loan_id for p in payments if p.loan_id in allocated and p.date > payment_date})
    return PaymentPlan(
        amount=amount,
        payment_date=payment_date,
        allocations=tuple(allocations),
        total_debt=total_debt,
        later_payment_loans=tuple(later)
    )


class PaymentProcessor:
    """
    Records payments and reverts them
    """
    
    def __init__(self, store, ledger, reconciliation,
                 audit_trail: Optional[AuditTrail] = None,
                 config: Optional[LedgerConfig] = None):
        self.store = store
        self.ledger = ledger
        self.reconciliation = reconciliation
        self.audit_trail = audit_trail
        self.config = config or get_config()
        self.interest = InterestAccrualEngine(store, audit_trail, self.config)
        self.logger = get_logger("loan_ledger.payments")
    
    def plan(self, amount: Number, payment_date: DateLike, today: DateLike,
             loan_id: Optional[int] = None) -> PaymentPlan:
        """Allocate a payment against the stored loans without persisting anything"""
        loans = self.store.get_loans()
        payments = self.store.get_payments()
        for loan in loans:
            if loan.is_open:
                self.interest.check_cache(loan, payments)
        return allocate_payment(
            amount, payment_date, loans, payments, today, loan_id=loan_id,
            tolerance=self.config.settlement_tolerance,
            days_in_year=self.config.days_in_year
        )
    
    def validate_payment(self, amount: Number, payment_date: DateLike, today: DateLike,
                         loan_id: Optional[int] = None) -> Result[PaymentPlan]:
        """
        Exception-free variant of ``plan``
        
        Returns:
            Result holding the PaymentPlan, or the reason it was refused
        """
        try:
            return Result.ok(self.plan(amount, payment_date, today, loan_id))
        except LedgerError as e:
            return Result.from_error(e)
    
    def process_payment(self, amount: Number, payment_date: DateLike, today: DateLike,
                        loan_id: Optional[int] = None) -> List[Payment]:
        """
        Allocate and record a payment
        
        For each loan receiving funds an InterestEvent, a Payment and the loan
        update are written in that order, followed by one ``payment_in``
        account transaction and regeneration of the affected invoices. All of
        it runs in a single storage transaction.
        
        Args:
            amount: Payment amount
            payment_date: Date the payment was made
            today: Current date
            loan_id: Apply to this loan only
            
        Returns:
            The Payment records created, one per loan
            
        Raises:
            ValidationError: If the payment is refused
            NotFoundError: If ``loan_id`` does not exist
            StorageError: If a write fails; nothing is committed
        """
        today = parse_date(today, "today")
        plan = self.plan(amount, payment_date, today, loan_id)
        
        if plan.later_payment_loans:
            log_action(self.logger, "warning",
                       f"Payment dated {plan.payment_date} precedes existing payments",
                       action="process_payment",
                       extra={'loan_ids': list(plan.later_payment_loans)})
        
        created = []
        with self.store.atomic():
            next_payment_id = self.store.next_id(self.store.payments_table)
            for allocation in plan.allocations:
                loan = allocation.loan
                self.store.save_interest_event(InterestEvent(
                    id=make_interest_event_id(loan.id),
                    loan_id=loan.id,
                    date=plan.payment_date,
                    amount=allocation.outstanding_interest,
                    days=allocation.interest_days,
                    principal=allocation.interest_basis,
                    description=f"Interest settled by payment on loan {loan.loan_number}"
                ))
                
                payment = Payment(
                    id=next_payment_id,
                    loan_id=loan.id,
                    date=plan.payment_date,
                    total_paid=allocation.total_paid,
                    interest_paid=allocation.interest_paid,
                    principal_paid=allocation.principal_paid
                )
                self.store.save_payment(payment)
                next_payment_id += 1
                
                self.store.update_loan(loan.id, {
                    'remaining_principal': allocation.new_remaining_principal,
                    'accrued_interest': allocation.new_accrued_interest,
                    'status': allocation.new_status,
                    'last_interest_accrual': plan.payment_date
                })
                created.append(payment)
                
                if self.audit_trail:
                    self.audit_trail.log_event(
                        AuditEventType.PAYMENT_RECORDED, "payment", payment.id,
                        payment.to_dict()
                    )
                    if allocation.new_status == LoanStatus.PAID:
                        self.audit_trail.log_event(
                            AuditEventType.LOAN_PAID_OFF, "loan", loan.id,
                            {'payment_id': payment.id, 'date': plan.payment_date}
                        )
            
            numbers = ", ".join(a.loan.loan_number for a in plan.allocations)
            self.ledger.record_transaction(
                TransactionType.PAYMENT_IN, plan.amount,
                f"Payment received for loan(s) {numbers}", plan.payment_date,
                related_loan_id=plan.allocations[0].loan.id
            )
            self.reconciliation.regenerate_affected(plan.payment_date, today)
        
        log_action(self.logger, "info", f"Payment of {plan.amount} recorded",
                   action="process_payment", resource=f"payment:{created[0].id}",
                   extra={'payment_ids': [p.id for p in created],
                          'loan_ids': plan.loan_ids,
                          'date': plan.payment_date.isoformat()})
        return created
    
    def delete_payment(self, payment_id: int, today: DateLike) -> Optional[Loan]:
        """
        Delete a payment and restore its loan from the remaining history
        
        The loan's remaining principal, interest cache and status are
        recomputed rather than patched. When configured, a compensating
        withdrawal is appended to the account ledger.
        
        Returns:
            The restored loan, or None if the loan no longer exists
            
        Raises:
            NotFoundError: If the payment does not exist
        """
        today = parse_date(today, "today")
        payment = self.store.get_payment(payment_id)
        if payment is None:
            raise NotFoundError("payment", payment_id)
        
        loan = self.store.get_loan(payment.loan_id)
        with self.store.atomic():
            self.store.delete_payment(payment_id)
            
            if loan is not None:
                history = self.store.get_loan_payments(loan.id)
                principal = remaining_principal(loan, history)
                as_of = loan.last_interest_accrual or loan.start_date
                interest = outstanding_interest(loan, history, as_of, self.config.days_in_year)
                loan = self.store.update_loan(loan.id, {
                    'remaining_principal': principal,
                    'accrued_interest': interest,
                    'status': Loan.status_for(principal, interest,
                                              self.config.settlement_tolerance)
                })
            
            if self.config.reverse_ledger_on_payment_delete:
                self.ledger.record_transaction(
                    TransactionType.WITHDRAWAL, payment.total_paid,
                    f"Reversal of deleted payment #{payment.id}", today,
                    related_loan_id=payment.loan_id
                )
            
            if self.audit_trail:
                self.audit_trail.log_event(
                    AuditEventType.PAYMENT_DELETED, "payment", payment.id, payment.to_dict()
                )
            self.reconciliation.regenerate_affected(payment.date, today)
        
        log_action(self.logger, "info", f"Payment {payment_id} deleted",
                   action="delete_payment", resource=f"payment:{payment_id}",
                   extra={'loan_id': payment.loan_id, 'total_paid': str(payment.total_paid)})
        return loan
    
    def get_payments(self, loan_id: Optional[int] = None) -> List[Payment]:
        if loan_id is None:
            return self.store.get_payments()
        return self.store.get_loan_payments(loan_id)
