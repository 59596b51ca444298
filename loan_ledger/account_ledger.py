"""
Account Balance Ledger Module

Append-only running-balance log of cash movements: manual deposits and
withdrawals plus the system entries for loans paid out and payments received.
Each row stores the balance after it; the current balance is read from the
most recently appended row.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from .audit import AuditEventType, AuditTrail
from .dates import DateLike, parse_date
from .exceptions import ValidationError
from .logging_config import get_logger, log_action
from .models import AccountTransaction, TransactionType
from .money import ZERO, Number, round_money, to_decimal


class AccountLedger:
    """
    Running-balance account ledger
    """
    
    def __init__(self, store, audit_trail: Optional[AuditTrail] = None):
        self.store = store
        self.audit_trail = audit_trail
        self.logger = get_logger("loan_ledger.account")
    
    @staticmethod
    def _amount(amount: Number) -> Decimal:
        try:
            value = to_decimal(amount)
        except ValueError:
            raise ValidationError(f"Invalid amount: {amount!r}", {'amount': str(amount)})
        if value <= ZERO:
            raise ValidationError("Amount must be positive", {'amount': str(value)})
        return value
    
    def record_transaction(
        self,
        transaction_type: Union[TransactionType, str],
        amount: Number,
        description: str,
        transaction_date: DateLike,
        related_loan_id: Optional[int] = None
    ) -> AccountTransaction:
        """
        Append a ledger row
        
        Args:
            transaction_type: Kind of movement; outflows (withdrawal, loan_out)
                are stored with a negative amount
            amount: Magnitude of the movement
            description: Free text
            transaction_date: Date of the movement
            related_loan_id: Loan the movement belongs to, if any
            
        Returns:
            The appended AccountTransaction
        """
        transaction_type = TransactionType(transaction_type)
        amount = self._amount(amount)
        transaction_date = parse_date(transaction_date, "transaction date")
        
        last = self.store.last_account_transaction()
        previous_balance = last.balance if last else ZERO
        
        # The very first deposit opens the account
        if last is None and transaction_type == TransactionType.DEPOSIT:
            transaction_type = TransactionType.INITIAL
        
        signed = -amount if transaction_type.is_outflow else amount
        transaction = AccountTransaction(
            id=None,
            balance=previous_balance + signed,
            transaction_type=transaction_type,
            transaction_amount=signed,
            description=description,
            date=transaction_date,
            related_loan_id=related_loan_id
        )
        self.store.save_account_transaction(transaction)
        
        if self.audit_trail:
            self.audit_trail.log_event(
                AuditEventType.ACCOUNT_TRANSACTION_RECORDED, "account_transaction",
                transaction.id, transaction.to_dict()
            )
        log_action(self.logger, "info", f"{transaction_type.value} of {signed} recorded",
                   action="record_transaction", resource=f"account_transaction:{transaction.id}",
                   extra={'balance': str(transaction.balance), 'related_loan_id': related_loan_id})
        return transaction
    
    def deposit(self, amount: Number, transaction_date: DateLike,
                description: str = "Manual deposit") -> AccountTransaction:
        return self.record_transaction(TransactionType.DEPOSIT, amount, description,
                                       transaction_date)
    
    def withdraw(self, amount: Number, transaction_date: DateLike,
                 description: str = "Manual withdrawal") -> AccountTransaction:
        """
        Withdraw funds
        
        Raises:
            ValidationError: If the amount exceeds the current balance
        """
        amount = self._amount(amount)
        balance = self.current_balance()
        if amount > balance:
            raise ValidationError(
                f"Insufficient balance: requested {amount}, available {round_money(balance)}",
                {'requested': str(amount), 'balance': str(balance)}
            )
        return self.record_transaction(TransactionType.WITHDRAWAL, amount, description,
                                       transaction_date)
    
    def current_balance(self) -> Decimal:
        last = self.store.last_account_transaction()
        return last.balance if last else ZERO
    
    def transactions(self) -> List[AccountTransaction]:
        """Ledger rows ordered by date, then id"""
        return self.store.get_account_transactions()
    
    def verify_running_balance(self) -> Dict[str, Any]:
        """
        Check every stored running balance against a fresh summation
        
        Rows are replayed in the order they were appended.
        
        Returns:
            ``valid`` flag, summed and cached balances, and mismatching row ids
        """
        rows = sorted(self.store.get_account_transactions(), key=lambda t: t.id)
        running = ZERO
        mismatches = []
        for row in rows:
            running += row.transaction_amount
            if row.balance != running:
                mismatches.append(row.id)
        
        cached = rows[-1].balance if rows else ZERO
        result = {
            'valid': not mismatches,
            'summed_balance': running,
            'cached_balance': cached,
            'mismatches': mismatches
        }
        if mismatches:
            log_action(self.logger, "warning", "Account ledger running balance mismatch",
                       action="verify_running_balance", extra={'rows': mismatches})
        return result
