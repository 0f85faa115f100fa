from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


EquipmentStatus = Literal["available", "reserved", "rented", "under_maintenance"]


class MachineUpsert(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    machineName: Optional[str] = None
    machineType: Optional[str] = None
    model: Optional[str] = None
    serialNumber: Optional[str] = None
    year: Optional[int] = Field(default=None, ge=1990)
    dailyRate: Optional[float] = Field(default=None, ge=0)
    status: Optional[EquipmentStatus] = None


class VehicleUpsert(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    vehicleNumber: Optional[str] = Field(default=None, min_length=3, max_length=50)
    type: Optional[str] = None
    model: Optional[str] = None
    manufacturer: Optional[str] = None
    year: Optional[int] = Field(default=None, ge=1990)
    serialNumber: Optional[str] = None
    condition: Optional[str] = None
    dailyRate: Optional[float] = Field(default=None, ge=0)
    status: Optional[EquipmentStatus] = None
