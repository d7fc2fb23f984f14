from datetime import datetime
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class LineAccessoryDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    accessoryId: Optional[int] = None
    name: Optional[str] = None
    serialNumber: Optional[str] = None
    checkedOutCondition: Optional[str] = None
    status: Literal["with_item", "missing", "returned", "damaged"] = "with_item"


class CreateRentalLineDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    # int: rental product id, str: unit unique identifier
    item: Optional[Union[int, str]] = None
    unitId: Optional[int] = None
    rentType: Literal["hourly", "daily", "monthly"]
    rentAtTime: Optional[float] = Field(default=None, ge=0)
    accessories: List[LineAccessoryDto] = []


class SoldLineDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    productId: int
    quantity: int
    price: float


class CreateRentalDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    customerId: int
    items: List[CreateRentalLineDto] = []
    soldItems: List[SoldLineDto] = []
    outTime: Optional[datetime] = None
    expectedReturnTime: Optional[datetime] = None
    advancePayment: float = Field(default=0, ge=0)
    accessoriesPayment: float = Field(default=0, ge=0)
    notes: Optional[str] = None


class ReturnedAccessoryDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    accessoryId: Optional[int] = None
    status: Literal["with_item", "missing", "returned", "damaged"] = "returned"
    damageCost: Optional[float] = None


class ReturnedLineDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    itemId: int
    returnCondition: Optional[Literal["good", "damaged", "missing"]] = None
    damageCost: Optional[float] = None
    accessories: List[ReturnedAccessoryDto] = []


class ReturnRentalDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    returnItems: List[ReturnedLineDto] = []
    paymentMethod: Optional[str] = None
    paymentAccountId: Optional[int] = None
    discountPercent: float = 0
    taxPercent: Optional[float] = None
    paidDueAmount: float = 0
    customizedTotalAmount: Optional[float] = None
