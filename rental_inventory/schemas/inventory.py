from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

UnitStatus = Literal["available", "rented", "maintenance", "scrap", "missing", "damaged"]
UnitCondition = Literal["new", "good", "fair", "poor", "damaged"]


class UnitAccessoryDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    accessoryId: int
    name: Optional[str] = None
    serialNumber: Optional[str] = None
    condition: UnitCondition = "good"
    isIncluded: bool = True
    status: Literal["with_item", "missing", "damaged"] = "with_item"


class UnitCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    uniqueIdentifier: Optional[str] = None
    serialNumber: Optional[str] = None
    condition: UnitCondition = "good"
    purchaseCost: Optional[float] = Field(default=None, ge=0)
    purchaseDate: Optional[datetime] = None
    batchNumber: Optional[str] = None
    notes: Optional[str] = None
    hourlyRent: float = Field(default=0, ge=0)
    dailyRent: float = Field(default=0, ge=0)
    monthlyRent: float = Field(default=0, ge=0)
    accessories: List[UnitAccessoryDto] = []


class UnitUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    status: Optional[UnitStatus] = None
    condition: Optional[UnitCondition] = None
    notes: Optional[str] = None
    damageReason: Optional[str] = None
    serialNumber: Optional[str] = None


class UnitAccessoriesUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    accessories: List[UnitAccessoryDto] = []
