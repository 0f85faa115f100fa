from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class CreateRentalDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    customerID: int
    machineID: Optional[int] = None
    vehicleID: Optional[int] = None
    rentalAmount: float = Field(ge=0)
    securityDeposit: float = Field(default=0, ge=0)
    expectedReturnDate: Optional[date] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def _one_equipment_reference(self):
        if (self.machineID is None) == (self.vehicleID is None):
            raise ValueError("Provide exactly one of machineID or vehicleID.")
        return self


class ReturnRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    returnCondition: Literal["good", "damaged", "broken"]
    notes: Optional[str] = None
