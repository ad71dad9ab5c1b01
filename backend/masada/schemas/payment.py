from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from typing import Any, Dict, Optional
from datetime import datetime

from masada.models.payment import Currency, PaymentMethod, PaymentStatus, EarningStatus


class PaymentCreate(BaseModel):
    amount: float = Field(..., ge=1)
    currency: Currency = Currency.ETB
    method: PaymentMethod
    description: Optional[str] = Field(None, max_length=500)
    metadata: Optional[Dict[str, Any]] = None


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    customer_id: str
    amount: float
    currency: Currency
    method: PaymentMethod
    status: PaymentStatus
    description: Optional[str] = None
    transaction_id: Optional[str] = None
    payment_url: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(
        None, validation_alias=AliasChoices("payment_metadata", "metadata")
    )
    paid_at: Optional[datetime] = None
    created_at: datetime


class EarningResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    tester_id: str
    tester_session_id: Optional[str] = None
    test_id: Optional[str] = None
    amount: float
    currency: Currency
    status: EarningStatus
    description: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: datetime


class EarningsSummary(BaseModel):
    total_earnings: float
    total_tests: int
    this_month_earnings: float
    pending_amount: float
    pending_tests: int
    completed_amount: float
    completed_tests: int
