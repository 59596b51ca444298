"""
Pydantic schemas for API requests

Money values and rates travel as decimal strings, dates as YYYY-MM-DD.
"""

from typing import Optional
from pydantic import BaseModel, Field


class CreateLoanRequest(BaseModel):
    debtor_name: str
    principal: str = Field(..., description="Decimal amount as string")
    interest_rate: str = Field(..., description="Annual percentage rate, e.g. \"15\"")
    start_date: str = Field(..., description="YYYY-MM-DD")
    destiny: Optional[str] = ""
    loan_id: Optional[int] = None


class UpdateLoanRequest(BaseModel):
    debtor_name: Optional[str] = None
    original_principal: Optional[str] = None
    interest_rate: Optional[str] = None
    start_date: Optional[str] = None
    destiny: Optional[str] = None


class PaymentRequest(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    payment_date: str = Field(..., description="YYYY-MM-DD")
    loan_id: Optional[int] = Field(None, description="Apply to this loan only")


class AccountMovementRequest(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    date: str = Field(..., description="YYYY-MM-DD")
    description: Optional[str] = None
