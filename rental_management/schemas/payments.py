from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


PaymentMethod = Literal["pending", "cash", "check", "credit_card", "bank_transfer", "online"]


class CreatePaymentDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    customerID: int
    rentalID: int
    amountPaid: float = Field(ge=0)
    outstandingDue: float = Field(ge=0)
    paymentMethod: PaymentMethod = "cash"
    transactionReference: Optional[str] = None
    notes: Optional[str] = None
    paymentDate: Optional[datetime] = None


class UpdatePaymentDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    amountPaid: Optional[float] = Field(default=None, ge=0)
    outstandingDue: Optional[float] = Field(default=None, ge=0)
    paymentMethod: Optional[PaymentMethod] = None
    transactionReference: Optional[str] = None
    notes: Optional[str] = None
    paymentDate: Optional[datetime] = None
