from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ProfileUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    email: Optional[str] = Field(default=None, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    phone: Optional[str] = Field(default=None, pattern=r"^\+?[\d\s\-()]*$")
    businessName: Optional[str] = Field(default=None, max_length=200)


class PasswordChangeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    currentPassword: str = Field(min_length=1)
    newPassword: str = Field(min_length=6)
    confirmPassword: str

    @model_validator(mode="after")
    def _passwords_match(self):
        if self.newPassword != self.confirmPassword:
            raise ValueError("Passwords do not match")
        return self
