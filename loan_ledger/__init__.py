"""
Loan Interest Ledger

Tracks loans, accrues simple daily interest on outstanding principal,
allocates payments interest-first across open loans and reconciles monthly
interest invoices from the immutable loan/payment history.
"""

__version__ = "1.0.0"
