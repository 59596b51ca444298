"""
Ledger Entities Module

Data model for loans, payments, interest audit events, account ledger rows and
monthly invoices. Records serialize to plain dictionaries: Decimals as
strings, dates as ISO strings, enums as their values.
"""

from dataclasses import dataclass, field, fields
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple

from .dates import invoice_id, loan_number
from .money import EPSILON, ZERO, to_decimal


class LoanStatus(Enum):
    """Loan lifecycle states"""
    OPEN = "Open"
    PAID = "Paid"


class InvoiceStatus(Enum):
    """Monthly invoice settlement states"""
    PENDING = "Pending"    # Interest owed, nothing paid this month
    PARTIAL = "Partial"    # Some interest paid, some still owed
    PAID = "Paid"          # Nothing outstanding at month end


class TransactionType(Enum):
    """Account ledger row types"""
    INITIAL = "initial"
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    LOAN_OUT = "loan_out"
    PAYMENT_IN = "payment_in"
    
    @property
    def is_outflow(self) -> bool:
        return self in (TransactionType.WITHDRAWAL, TransactionType.LOAN_OUT)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Record:
    """Dictionary (de)serialization shared by all ledger entities"""
    
    decimal_fields: ClassVar[Tuple[str, ...]] = ()
    date_fields: ClassVar[Tuple[str, ...]] = ()
    datetime_fields: ClassVar[Tuple[str, ...]] = ()
    enum_fields: ClassVar[Dict[str, type]] = {}
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, Decimal):
                value = str(value)
            elif isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, date):
                value = value.isoformat()
            elif isinstance(value, Enum):
                value = value.value
            result[f.name] = value
        return result
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        """Create instance from a stored dictionary"""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        
        for name in cls.decimal_fields:
            if values.get(name) is not None:
                values[name] = to_decimal(values[name])
        for name in cls.date_fields:
            if isinstance(values.get(name), str):
                values[name] = date.fromisoformat(values[name])
        for name in cls.datetime_fields:
            if isinstance(values.get(name), str):
                values[name] = datetime.fromisoformat(values[name])
        for name, enum_type in cls.enum_fields.items():
            if values.get(name) is not None and not isinstance(values[name], enum_type):
                values[name] = enum_type(values[name])
        
        return cls(**values)


@dataclass
class Loan(Record):
    """
    A debt instrument accruing simple daily interest.
    
    ``accrued_interest`` is a cache of the outstanding interest as of
    ``last_interest_accrual``; the authoritative value is always recomputed
    from the loan terms and its payment history.
    """
    id: int
    debtor_name: str
    original_principal: Decimal
    remaining_principal: Decimal
    interest_rate: Decimal              # Annual percentage, e.g. 15 for 15%
    start_date: date
    accrued_interest: Decimal = ZERO
    status: LoanStatus = LoanStatus.OPEN
    last_interest_accrual: Optional[date] = None
    destiny: str = ""
    loan_number: str = ""
    created_at: datetime = field(default_factory=utc_now)
    
    decimal_fields: ClassVar[Tuple[str, ...]] = (
        'original_principal', 'remaining_principal', 'interest_rate', 'accrued_interest'
    )
    date_fields: ClassVar[Tuple[str, ...]] = ('start_date', 'last_interest_accrual')
    datetime_fields: ClassVar[Tuple[str, ...]] = ('created_at',)
    enum_fields: ClassVar[Dict[str, type]] = {'status': LoanStatus}
    
    def __post_init__(self):
        if self.original_principal <= ZERO:
            raise ValueError("Original principal must be positive")
        if self.remaining_principal < ZERO:
            raise ValueError("Remaining principal cannot be negative")
        if self.interest_rate < ZERO:
            raise ValueError("Interest rate cannot be negative")
        if not self.loan_number:
            self.loan_number = loan_number(self.id, self.start_date)
    
    @property
    def is_open(self) -> bool:
        return self.status == LoanStatus.OPEN
    
    @staticmethod
    def status_for(remaining_principal: Decimal, accrued_interest: Decimal,
                   tolerance: Decimal = EPSILON) -> LoanStatus:
        """Paid iff both principal and interest are below the tolerance"""
        if remaining_principal < tolerance and accrued_interest < tolerance:
            return LoanStatus.PAID
        return LoanStatus.OPEN


@dataclass
class Payment(Record):
    """Immutable record of funds applied to one loan"""
    id: int
    loan_id: int
    date: date
    total_paid: Decimal
    interest_paid: Decimal
    principal_paid: Decimal
    created_at: datetime = field(default_factory=utc_now)
    
    decimal_fields: ClassVar[Tuple[str, ...]] = ('total_paid', 'interest_paid', 'principal_paid')
    date_fields: ClassVar[Tuple[str, ...]] = ('date',)
    datetime_fields: ClassVar[Tuple[str, ...]] = ('created_at',)
    
    def __post_init__(self):
        if self.interest_paid < ZERO or self.principal_paid < ZERO:
            raise ValueError("Payment portions cannot be negative")
        if abs(self.interest_paid + self.principal_paid - self.total_paid) > EPSILON:
            raise ValueError(
                f"Payment total {self.total_paid} does not equal interest "
                f"{self.interest_paid} + principal {self.principal_paid}"
            )


@dataclass
class InterestEvent(Record):
    """Audit record of an interest computation. Never read back as a balance."""
    id: str
    loan_id: int
    date: date
    amount: Decimal          # Interest computed for this event
    days: int                # Day count used
    principal: Decimal       # Principal the computation was based on
    description: str = ""
    created_at: datetime = field(default_factory=utc_now)
    
    decimal_fields: ClassVar[Tuple[str, ...]] = ('amount', 'principal')
    date_fields: ClassVar[Tuple[str, ...]] = ('date',)
    datetime_fields: ClassVar[Tuple[str, ...]] = ('created_at',)


@dataclass
class AccountTransaction(Record):
    """Append-only account ledger row; ``balance`` is the balance after it"""
    id: Optional[int]
    balance: Decimal
    transaction_type: TransactionType
    transaction_amount: Decimal      # Signed: negative for outflows
    description: str
    date: date
    related_loan_id: Optional[int] = None
    created_at: datetime = field(default_factory=utc_now)
    
    decimal_fields: ClassVar[Tuple[str, ...]] = ('balance', 'transaction_amount')
    date_fields: ClassVar[Tuple[str, ...]] = ('date',)
    datetime_fields: ClassVar[Tuple[str, ...]] = ('created_at',)
    enum_fields: ClassVar[Dict[str, type]] = {'transaction_type': TransactionType}


@dataclass
class MonthlyInvoice(Record):
    """Reconciled interest for one calendar month across all loans"""
    month: int
    year: int
    total_accrued: Decimal = ZERO     # Interest generated within the month
    total_paid: Decimal = ZERO        # Interest paid by payments dated in the month
    remaining: Decimal = ZERO         # Cumulative outstanding interest at month end
    status: InvoiceStatus = InvoiceStatus.PAID
    generated_date: Optional[date] = None
    last_updated: Optional[date] = None
    loan_details: List[Dict[str, Any]] = field(default_factory=list)
    payments_in_month: List[Dict[str, Any]] = field(default_factory=list)
    daily_breakdown: List[Dict[str, Any]] = field(default_factory=list)  # Per-loan rows for each day
    id: str = ""
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    
    decimal_fields: ClassVar[Tuple[str, ...]] = ('total_accrued', 'total_paid', 'remaining')
    date_fields: ClassVar[Tuple[str, ...]] = ('generated_date', 'last_updated')
    datetime_fields: ClassVar[Tuple[str, ...]] = ('created_at', 'updated_at')
    enum_fields: ClassVar[Dict[str, type]] = {'status': InvoiceStatus}
    
    def __post_init__(self):
        if not 1 <= self.month <= 12:
            raise ValueError(f"Invalid month {self.month}")
        if not self.id:
            self.id = invoice_id(self.month, self.year)
    
    @property
    def period(self) -> Tuple[int, int]:
        return self.month, self.year
