"""
Portfolio reporting

Read-only summaries over the ledger, recomputed from history.
"""

from typing import Any, Dict, Optional

from .config import LedgerConfig, get_config
from .dates import DateLike, parse_date
from .interest import outstanding_interest, remaining_principal
from .models import InvoiceStatus, LoanStatus
from .money import ZERO, round_money


def portfolio_summary(store, as_of: DateLike, config: Optional[LedgerConfig] = None) -> Dict[str, Any]:
    """
    Snapshot of the loan book and the cash account
    
    Args:
        store: LedgerStore to read from
        as_of: Date at which outstanding interest is measured
        config: Ledger configuration (global configuration when omitted)
        
    Returns:
        Dictionary of loan counts and rounded money totals
    """
    config = config or get_config()
    as_of = parse_date(as_of, "as of date")
    loans = store.get_loans()
    payments = store.get_payments()
    
    total_principal = ZERO
    total_interest = ZERO
    for loan in loans:
        if loan.status != LoanStatus.OPEN:
            continue
        total_principal += remaining_principal(loan, payments)
        total_interest += outstanding_interest(loan, payments, as_of, config.days_in_year)
    
    invoices = store.get_monthly_invoices()
    unpaid = [inv for inv in invoices if inv.status != InvoiceStatus.PAID]
    last = store.last_account_transaction()
    places = config.money_places
    
    return {
        'as_of': as_of.isoformat(),
        'open_loans': sum(1 for loan in loans if loan.status == LoanStatus.OPEN),
        'paid_loans': sum(1 for loan in loans if loan.status == LoanStatus.PAID),
        'total_remaining_principal': round_money(total_principal, places),
        'total_outstanding_interest': round_money(total_interest, places),
        'total_debt': round_money(total_principal + total_interest, places),
        'account_balance': round_money(last.balance if last else ZERO, places),
        'unpaid_invoices': len(unpaid),
        # Invoice remaining is cumulative, so only the latest month counts
        'latest_invoice_remaining': round_money(invoices[-1].remaining if invoices else ZERO, places),
        'total_payments': len(payments),
        'total_paid': round_money(sum((p.total_paid for p in payments), ZERO), places)
    }
