"""
Loan Lifecycle Module

Creating, editing and deleting loans. Every change records its cash effect
on the account ledger, is audited, and regenerates the affected invoices.
"""

from dataclasses import replace
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .audit import AuditEventType, AuditTrail
from .config import LedgerConfig, get_config
from .dates import DateLike, parse_date
from .exceptions import NotFoundError, ValidationError
from .interest import outstanding_interest, remaining_principal
from .logging_config import get_logger, log_action
from .models import Loan, LoanStatus, TransactionType
from .money import ZERO, Number, money_sum, to_decimal

EDITABLE_FIELDS = ('debtor_name', 'interest_rate', 'start_date', 'destiny', 'original_principal')


def _decimal(value: Number, field: str) -> Decimal:
    try:
        return to_decimal(value)
    except ValueError:
        raise ValidationError(f"Invalid {field}: {value!r}", {'field': field, 'value': str(value)})


class LoanManager:
    """
    Loan registry
    """
    
    def __init__(self, store, ledger, reconciliation,
                 audit_trail: Optional[AuditTrail] = None,
                 config: Optional[LedgerConfig] = None):
        self.store = store
        self.ledger = ledger
        self.reconciliation = reconciliation
        self.audit_trail = audit_trail
        self.config = config or get_config()
        self.logger = get_logger("loan_ledger.loans")
    
    def _cached_interest(self, loan: Loan, payments) -> Decimal:
        # Outstanding interest as of the loan's last accrual point
        if loan.last_interest_accrual is None:
            return ZERO
        return outstanding_interest(loan, payments, loan.last_interest_accrual,
                                    self.config.days_in_year)
    
    def create_loan(
        self,
        debtor_name: str,
        principal: Number,
        interest_rate: Number,
        start_date: DateLike,
        today: DateLike,
        destiny: str = "",
        loan_id: Optional[int] = None
    ) -> Loan:
        """
        Create an open loan and pay it out
        
        Args:
            debtor_name: Borrower
            principal: Amount lent
            interest_rate: Annual percentage rate
            start_date: Date interest starts accruing
            today: Current date
            destiny: Purpose of the loan
            loan_id: Explicit id; the next sequential id when omitted
            
        Returns:
            The created Loan
            
        Raises:
            ValidationError: If any input is invalid or the id is taken
        """
        if not debtor_name or not debtor_name.strip():
            raise ValidationError("Debtor name is required")
        principal = _decimal(principal, "principal")
        interest_rate = _decimal(interest_rate, "interest rate")
        if principal <= ZERO:
            raise ValidationError("Principal must be positive", {'principal': str(principal)})
        if interest_rate < ZERO:
            raise ValidationError("Interest rate cannot be negative",
                                  {'interest_rate': str(interest_rate)})
        start_date = parse_date(start_date, "start date")
        today = parse_date(today, "today")
        if start_date > today:
            raise ValidationError(f"Start date {start_date} cannot be in the future",
                                  {'start_date': start_date.isoformat()})
        
        if loan_id is None:
            loan_id = self.store.next_id(self.store.loans_table)
        elif self.store.get_loan(loan_id) is not None:
            raise ValidationError(f"Loan id {loan_id} already exists", {'loan_id': loan_id})
        
        loan = Loan(
            id=loan_id,
            debtor_name=debtor_name.strip(),
            original_principal=principal,
            remaining_principal=principal,
            interest_rate=interest_rate,
            start_date=start_date,
            destiny=destiny or ""
        )
        
        with self.store.atomic():
            self.store.save_loan(loan)
            self.ledger.record_transaction(
                TransactionType.LOAN_OUT, principal,
                f"Loan {loan.loan_number} to {loan.debtor_name}", start_date,
                related_loan_id=loan.id
            )
            if self.audit_trail:
                self.audit_trail.log_event(AuditEventType.LOAN_CREATED, "loan", loan.id,
                                           loan.to_dict())
            self.reconciliation.regenerate_affected(start_date, today)
        
        log_action(self.logger, "info", f"Loan {loan.loan_number} created",
                   action="create_loan", resource=f"loan:{loan.id}",
                   extra={'principal': str(principal), 'interest_rate': str(interest_rate)})
        return loan
    
    def edit_loan(self, loan_id: int, today: DateLike, **changes: Any) -> Loan:
        """
        Edit a loan's terms
        
        A change of original principal shifts the remaining principal by the
        same amount. Balances and status are rebuilt from payment history.
        
        Raises:
            NotFoundError: If the loan does not exist
            ValidationError: If a field is not editable, the start date moves
                past the first payment, or the principal drops below what has
                already been repaid
        """
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
        
        today = parse_date(today, "today")
        loan = self.get_loan(loan_id)
        payments = self.store.get_loan_payments(loan_id)
        updates: Dict[str, Any] = {}
        
        if 'debtor_name' in changes:
            name = (changes['debtor_name'] or "").strip()
            if not name:
                raise ValidationError("Debtor name is required")
            updates['debtor_name'] = name
        if 'destiny' in changes:
            updates['destiny'] = changes['destiny'] or ""
        if 'interest_rate' in changes:
            rate = _decimal(changes['interest_rate'], "interest rate")
            if rate < ZERO:
                raise ValidationError("Interest rate cannot be negative",
                                      {'interest_rate': str(rate)})
            updates['interest_rate'] = rate
        if 'start_date' in changes:
            start = parse_date(changes['start_date'], "start date")
            if start > today:
                raise ValidationError(f"Start date {start} cannot be in the future")
            if payments and start > payments[0].date:
                raise ValidationError(
                    f"Start date {start} is after the first payment on {payments[0].date}",
                    {'first_payment_date': payments[0].date.isoformat()}
                )
            updates['start_date'] = start
        if 'original_principal' in changes:
            principal = _decimal(changes['original_principal'], "principal")
            repaid = money_sum(p.principal_paid for p in payments)
            if principal <= ZERO or principal < repaid:
                raise ValidationError(
                    f"Principal {principal} is below the {repaid} already repaid",
                    {'principal': str(principal), 'repaid': str(repaid)}
                )
            updates['original_principal'] = principal
        
        # Rebuilding through replace() re-derives the loan number
        edited = replace(loan, loan_number="", **updates)
        principal_left = remaining_principal(edited, payments)
        interest = self._cached_interest(edited, payments)
        edited = replace(
            edited,
            remaining_principal=principal_left,
            accrued_interest=interest,
            status=Loan.status_for(principal_left, interest, self.config.settlement_tolerance)
        )
        
        with self.store.atomic():
            self.store.save_loan(edited)
            if self.audit_trail:
                self.audit_trail.log_event(AuditEventType.LOAN_UPDATED, "loan", loan_id,
                                           {'changes': updates})
            self.reconciliation.regenerate_affected(min(loan.start_date, edited.start_date), today)
        
        log_action(self.logger, "info", f"Loan {edited.loan_number} updated",
                   action="edit_loan", resource=f"loan:{loan_id}",
                   extra={'fields': sorted(updates)})
        return edited
    
    def delete_loan(self, loan_id: int, today: DateLike) -> None:
        """
        Delete a loan with its payments and interest events
        
        The account ledger is left untouched.
        """
        today = parse_date(today, "today")
        loan = self.get_loan(loan_id)
        with self.store.atomic():
            self.store.delete_loan(loan_id)
            if self.audit_trail:
                self.audit_trail.log_event(AuditEventType.LOAN_DELETED, "loan", loan_id,
                                           {'loan_number': loan.loan_number})
            self.reconciliation.regenerate_affected(loan.start_date, today)
        
        log_action(self.logger, "info", f"Loan {loan.loan_number} deleted",
                   action="delete_loan", resource=f"loan:{loan_id}")
    
    def get_loan(self, loan_id: int) -> Loan:
        loan = self.store.get_loan(loan_id)
        if loan is None:
            raise NotFoundError("loan", loan_id)
        return loan
    
    def list_loans(self, status: Optional[LoanStatus] = None) -> List[Loan]:
        loans = self.store.get_loans()
        if status is None:
            return loans
        try:
            status = LoanStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown loan status: {status}", {'status': str(status)})
        return [loan for loan in loans if loan.status == status]
    
    def open_loans(self) -> List[Loan]:
        return self.list_loans(LoanStatus.OPEN)
    
    def verify_and_fix_statuses(self) -> List[int]:
        """
        Rebuild every loan's remaining principal, interest cache and status
        from its payment history
        
        Returns:
            Ids of loans that had drifted and were repaired
        """
        fixed = []
        tolerance = self.config.settlement_tolerance
        with self.store.atomic():
            for loan in self.store.get_loans():
                payments = self.store.get_loan_payments(loan.id)
                principal = remaining_principal(loan, payments)
                interest = self._cached_interest(loan, payments)
                status = Loan.status_for(principal, interest, tolerance)
                
                drifted = (
                    abs(principal - loan.remaining_principal) > tolerance
                    or abs(interest - loan.accrued_interest) > tolerance
                    or status != loan.status
                )
                if not drifted:
                    continue
                self.store.update_loan(loan.id, {
                    'remaining_principal': principal,
                    'accrued_interest': interest,
                    'status': status
                })
                fixed.append(loan.id)
                log_action(self.logger, "warning", f"Loan {loan.loan_number} repaired",
                           action="verify_and_fix_statuses", resource=f"loan:{loan.id}",
                           extra={'status': status.value, 'remaining_principal': str(principal),
                                  'accrued_interest': str(interest)})
        return fixed
