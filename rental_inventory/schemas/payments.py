from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class PaymentAccountCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(min_length=1)
    accountType: Literal["bank", "upi", "cash", "card_terminal"]
    accountNumber: Optional[str] = None
    bankName: Optional[str] = None
    ifscCode: Optional[str] = None
    upiId: Optional[str] = None
    openingBalance: float = Field(default=0, ge=0)
    description: Optional[str] = None


class PaymentAccountUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Optional[str] = None
    accountNumber: Optional[str] = None
    bankName: Optional[str] = None
    ifscCode: Optional[str] = None
    upiId: Optional[str] = None
    description: Optional[str] = None
    status: Optional[Literal["active", "inactive"]] = None


class RecordPaymentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    amount: float
    paymentMethod: Optional[str] = None
    paymentAccountId: Optional[int] = None
    notes: Optional[str] = None
    direction: Literal["credit", "debit"] = "credit"
