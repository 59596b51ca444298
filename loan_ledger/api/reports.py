"""
Reporting endpoints
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.encoders import jsonable_encoder

from .deps import LedgerSystem, get_ledger_system, get_today, http_error
from ..dates import parse_date
from ..exceptions import LedgerError


router = APIRouter()


@router.get("/summary")
async def get_summary(
    as_of: Optional[str] = None,
    system: LedgerSystem = Depends(get_ledger_system),
    today: date = Depends(get_today)
):
    """Portfolio snapshot"""
    try:
        summary = system.summary(parse_date(as_of, "as_of") if as_of else today)
    except LedgerError as e:
        raise http_error(e)
    return jsonable_encoder(summary, custom_encoder={Decimal: str})


@router.get("/audit")
async def verify_audit_trail(system: LedgerSystem = Depends(get_ledger_system)):
    """Verify the hash chain of the audit trail"""
    if system.audit_trail is None:
        return {"enabled": False}
    result = system.audit_trail.verify_integrity()
    result['enabled'] = True
    return result
