"""
Account ledger endpoints
"""

from fastapi import APIRouter, Depends, status

from .deps import LedgerSystem, get_ledger_system, http_error
from .schemas import AccountMovementRequest
from ..exceptions import LedgerError


router = APIRouter()


@router.get("/balance")
async def get_balance(system: LedgerSystem = Depends(get_ledger_system)):
    """Current account balance"""
    return {"balance": str(system.account_ledger.current_balance())}


@router.get("/transactions")
async def list_transactions(system: LedgerSystem = Depends(get_ledger_system)):
    """Ledger rows ordered by date"""
    rows = system.account_ledger.transactions()
    return {"transactions": [row.to_dict() for row in rows]}


@router.post("/deposit", status_code=status.HTTP_201_CREATED)
async def deposit(request: AccountMovementRequest,
                  system: LedgerSystem = Depends(get_ledger_system)):
    """Record a manual deposit"""
    try:
        row = system.account_ledger.deposit(
            request.amount, request.date, request.description or "Manual deposit"
        )
    except LedgerError as e:
        raise http_error(e)
    return row.to_dict()


@router.post("/withdraw", status_code=status.HTTP_201_CREATED)
async def withdraw(request: AccountMovementRequest,
                   system: LedgerSystem = Depends(get_ledger_system)):
    """Record a manual withdrawal"""
    try:
        row = system.account_ledger.withdraw(
            request.amount, request.date, request.description or "Manual withdrawal"
        )
    except LedgerError as e:
        raise http_error(e)
    return row.to_dict()


@router.get("/verify")
async def verify_balance(system: LedgerSystem = Depends(get_ledger_system)):
    """Check the running balances against a fresh summation"""
    result = system.account_ledger.verify_running_balance()
    return {
        "valid": result['valid'],
        "summed_balance": str(result['summed_balance']),
        "cached_balance": str(result['cached_balance']),
        "mismatches": result['mismatches']
    }
