"""
Loan endpoints
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, status

from .deps import LedgerSystem, get_ledger_system, get_today, http_error
from .schemas import CreateLoanRequest, UpdateLoanRequest
from ..dates import parse_date
from ..exceptions import LedgerError
from ..interest import outstanding_interest, remaining_principal
from ..money import round_money


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_loan(
    request: CreateLoanRequest,
    system: LedgerSystem = Depends(get_ledger_system),
    today: date = Depends(get_today)
):
    """Create a loan and record its payout"""
    try:
        loan = system.loan_manager.create_loan(
            debtor_name=request.debtor_name,
            principal=request.principal,
            interest_rate=request.interest_rate,
            start_date=request.start_date,
            today=today,
            destiny=request.destiny,
            loan_id=request.loan_id
        )
    except LedgerError as e:
        raise http_error(e)
    
    return {
        "loan_id": loan.id,
        "loan_number": loan.loan_number,
        "message": "Loan created successfully"
    }


@router.get("")
async def list_loans(
    loan_status: Optional[str] = None,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """List loans, optionally filtered by status (Open or Paid)"""
    try:
        loans = system.loan_manager.list_loans(loan_status)
    except LedgerError as e:
        raise http_error(e)
    return {"loans": [loan.to_dict() for loan in loans]}


@router.post("/verify")
async def verify_loans(system: LedgerSystem = Depends(get_ledger_system)):
    """Rebuild loan balances and statuses from payment history"""
    try:
        fixed = system.loan_manager.verify_and_fix_statuses()
    except LedgerError as e:
        raise http_error(e)
    return {"fixed_loan_ids": fixed}


@router.post("/accrue")
async def run_daily_accrual(
    system: LedgerSystem = Depends(get_ledger_system),
    today: date = Depends(get_today)
):
    """Bring every open loan's interest cache up to today"""
    try:
        events = system.interest_engine.run_daily_accrual(today)
    except LedgerError as e:
        raise http_error(e)
    return {"accrued_loan_ids": [event.loan_id for event in events]}


@router.get("/{loan_id}")
async def get_loan(loan_id: int, system: LedgerSystem = Depends(get_ledger_system)):
    """Get loan details"""
    try:
        loan = system.loan_manager.get_loan(loan_id)
    except LedgerError as e:
        raise http_error(e)
    return loan.to_dict()


@router.get("/{loan_id}/balance")
async def get_loan_balance(
    loan_id: int,
    as_of: Optional[str] = None,
    system: LedgerSystem = Depends(get_ledger_system),
    today: date = Depends(get_today)
):
    """Principal and interest owed on a loan, recomputed from its payments"""
    try:
        loan = system.loan_manager.get_loan(loan_id)
        as_of_date = parse_date(as_of, "as_of") if as_of else today
        payments = system.store.get_loan_payments(loan_id)
        principal = remaining_principal(loan, payments)
        interest = outstanding_interest(loan, payments, as_of_date, system.config.days_in_year)
    except LedgerError as e:
        raise http_error(e)
    
    return {
        "loan_id": loan.id,
        "as_of": as_of_date.isoformat(),
        "remaining_principal": str(round_money(principal)),
        "outstanding_interest": str(round_money(interest)),
        "total_owed": str(round_money(principal + interest))
    }


@router.get("/{loan_id}/payments")
async def get_loan_payments(loan_id: int, system: LedgerSystem = Depends(get_ledger_system)):
    """Payments recorded against a loan"""
    try:
        system.loan_manager.get_loan(loan_id)
        payments = system.payment_processor.get_payments(loan_id)
    except LedgerError as e:
        raise http_error(e)
    return {"payments": [payment.to_dict() for payment in payments]}


@router.patch("/{loan_id}")
async def update_loan(
    loan_id: int,
    request: UpdateLoanRequest,
    system: LedgerSystem = Depends(get_ledger_system),
    today: date = Depends(get_today)
):
    """Edit a loan's terms"""
    changes = {name: value for name, value in request.dict().items() if value is not None}
    try:
        loan = system.loan_manager.edit_loan(loan_id, today, **changes)
    except LedgerError as e:
        raise http_error(e)
    return loan.to_dict()


@router.delete("/{loan_id}")
async def delete_loan(
    loan_id: int,
    system: LedgerSystem = Depends(get_ledger_system),
    today: date = Depends(get_today)
):
    """Delete a loan with its payments"""
    try:
        system.loan_manager.delete_loan(loan_id, today)
    except LedgerError as e:
        raise http_error(e)
    return {"message": "Loan deleted successfully"}
