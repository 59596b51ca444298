"""
Monthly invoice endpoints
"""

from datetime import date

from fastapi import APIRouter, Depends

from .deps import LedgerSystem, get_ledger_system, get_today, http_error
from ..exceptions import LedgerError, NotFoundError
from ..dates import invoice_id


router = APIRouter()


@router.get("")
async def list_invoices(
    unpaid_only: bool = False,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """List monthly invoices, oldest first"""
    invoices = system.reconciliation.list_invoices(unpaid_only=unpaid_only)
    return {"invoices": [invoice.to_dict() for invoice in invoices]}


@router.get("/status")
async def generation_status(
    system: LedgerSystem = Depends(get_ledger_system),
    today: date = Depends(get_today)
):
    """Historical months with and without an invoice"""
    return system.reconciliation.generation_status(today)


@router.post("/generate-all")
async def generate_all(
    force: bool = False,
    system: LedgerSystem = Depends(get_ledger_system),
    today: date = Depends(get_today)
):
    """Backfill every elapsed month since the first loan"""
    try:
        invoices = system.reconciliation.generate_all(today, force=force)
    except LedgerError as e:
        raise http_error(e)
    return {"generated": [invoice.id for invoice in invoices]}


@router.post("/{year}/{month}")
async def generate_invoice(
    year: int,
    month: int,
    system: LedgerSystem = Depends(get_ledger_system),
    today: date = Depends(get_today)
):
    """Create or refresh one month's invoice"""
    try:
        invoice = system.reconciliation.generate_invoice(month, year, today)
    except LedgerError as e:
        raise http_error(e)
    return invoice.to_dict()


@router.get("/{year}/{month}")
async def get_invoice(year: int, month: int, system: LedgerSystem = Depends(get_ledger_system)):
    """Get one month's invoice"""
    try:
        invoice = system.reconciliation.get_invoice(month, year)
        if invoice is None:
            raise NotFoundError("invoice", invoice_id(month, year))
    except LedgerError as e:
        raise http_error(e)
    return invoice.to_dict()


@router.get("/{year}/{month}/validate")
async def validate_invoice(year: int, month: int,
                           system: LedgerSystem = Depends(get_ledger_system)):
    """Compare a stored invoice with a fresh recomputation"""
    try:
        invoice = system.reconciliation.get_invoice(month, year)
        if invoice is None:
            raise NotFoundError("invoice", invoice_id(month, year))
        return system.reconciliation.validate_invoice(invoice)
    except LedgerError as e:
        raise http_error(e)


@router.delete("/{invoice_id}")
async def delete_invoice(invoice_id: str, system: LedgerSystem = Depends(get_ledger_system)):
    """Delete an invoice; it is rebuilt by the next regeneration"""
    try:
        system.reconciliation.delete_invoice(invoice_id)
    except LedgerError as e:
        raise http_error(e)
    return {"message": "Invoice deleted successfully"}
