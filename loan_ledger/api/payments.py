"""
Payment endpoints
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, status
from fastapi.encoders import jsonable_encoder

from .deps import LedgerSystem, get_ledger_system, get_today, http_error
from .schemas import PaymentRequest
from ..exceptions import LedgerError


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def make_payment(
    request: PaymentRequest,
    system: LedgerSystem = Depends(get_ledger_system),
    today: date = Depends(get_today)
):
    """Apply a payment across open loans, or to one loan when loan_id is given"""
    try:
        payments = system.payment_processor.process_payment(
            amount=request.amount,
            payment_date=request.payment_date,
            today=today,
            loan_id=request.loan_id
        )
    except LedgerError as e:
        raise http_error(e)
    
    return {
        "payments": [payment.to_dict() for payment in payments],
        "message": "Payment processed successfully"
    }


@router.post("/preview")
async def preview_payment(
    request: PaymentRequest,
    system: LedgerSystem = Depends(get_ledger_system),
    today: date = Depends(get_today)
):
    """Show how a payment would be allocated without recording it"""
    result = system.payment_processor.validate_payment(
        request.amount, request.payment_date, today, request.loan_id
    )
    if not result:
        return {"valid": False, "error": result.error, "error_type": result.error_type,
                "details": jsonable_encoder(result.details)}
    
    plan = result.value
    return {
        "valid": True,
        "amount": str(plan.amount),
        "allocations": [
            {
                "loan_id": a.loan.id,
                "loan_number": a.loan.loan_number,
                "interest_paid": str(a.interest_paid),
                "principal_paid": str(a.principal_paid),
                "total_paid": str(a.total_paid),
                "new_status": a.new_status.value
            }
            for a in plan.allocations
        ]
    }


@router.get("")
async def list_payments(
    loan_id: Optional[int] = None,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """List payments, optionally for one loan"""
    try:
        payments = system.payment_processor.get_payments(loan_id)
    except LedgerError as e:
        raise http_error(e)
    return {"payments": [payment.to_dict() for payment in payments]}


@router.delete("/{payment_id}")
async def delete_payment(
    payment_id: int,
    system: LedgerSystem = Depends(get_ledger_system),
    today: date = Depends(get_today)
):
    """Delete a payment and restore its loan"""
    try:
        loan = system.payment_processor.delete_payment(payment_id, today)
    except LedgerError as e:
        raise http_error(e)
    return {
        "loan": loan.to_dict() if loan else None,
        "message": "Payment deleted successfully"
    }
