from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CustomerUpsert(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    contactNumber: Optional[str] = Field(default=None, pattern=r"^\+?[\d\s\-()]+$")
    email: Optional[str] = Field(default=None, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    businessType: Optional[str] = None
