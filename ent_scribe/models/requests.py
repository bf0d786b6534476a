"""
Pydantic Models for API Requests
"""

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


class GenerateRequest(BaseModel):
    """Request Model for note generation"""
    model_config = ConfigDict(populate_by_name=True)

    transcript: str = Field(description="Final transcript of the encounter")
    template: str = Field(description="Template body to fill out")
    patient_name: Optional[str] = Field(default=None, alias="patientName")
    patient_dob: Optional[str] = Field(default=None, alias="patientDob")

    @field_validator("transcript", "template")
    @classmethod
    def not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be blank")
        return value
