from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class AlertActionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    notes: Optional[str] = Field(default=None, max_length=1000)
