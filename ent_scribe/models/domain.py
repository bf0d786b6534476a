"""
Domain models for the recording pipeline
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union
from pydantic import BaseModel, ConfigDict, Field


@dataclass(frozen=True)
class AudioSegment:
    """One encoded slice of the recording, identified by its capture position."""
    data: bytes
    mime_type: str
    sequence: int

    @property
    def size(self) -> int:
        return len(self.data)


class OutcomeKind(str, Enum):
    TEXT = "text"
    EMPTY = "empty"
    IGNORABLE = "ignorable"
    FATAL = "fatal"


@dataclass(frozen=True)
class Text:
    content: str
    kind = OutcomeKind.TEXT


@dataclass(frozen=True)
class Empty:
    kind = OutcomeKind.EMPTY


@dataclass(frozen=True)
class Ignorable:
    reason: str
    kind = OutcomeKind.IGNORABLE


@dataclass(frozen=True)
class Fatal:
    reason: str
    provider_status: Optional[int] = None
    kind = OutcomeKind.FATAL


TranscriptionOutcome = Union[Text, Empty, Ignorable, Fatal]


@dataclass(frozen=True)
class TranscriptFragment:
    sequence: int
    text: str


class PatientInfo(BaseModel):
    """Optional patient identification shown in the note header"""
    model_config = ConfigDict(frozen=True)

    name: Optional[str] = Field(default=None, description="Patient name")
    dob: Optional[str] = Field(default=None, description="Date of birth as entered")


class Template(BaseModel):
    """Clinical note template"""
    id: str = Field(description="Template ID")
    name: str = Field(description="Display name")
    content: str = Field(description="Template body with section headers")
    is_default: bool = Field(default=False, alias="isDefault", description="Built-in template")

    model_config = ConfigDict(populate_by_name=True)


class NoteRequest(BaseModel):
    """Everything the note backend needs. Built only from a finalized transcript."""
    model_config = ConfigDict(frozen=True)

    transcript: str = Field(description="Final assembled transcript")
    template_body: str = Field(description="Template content to fill out")
    patient_name: Optional[str] = Field(default=None)
    patient_dob: Optional[str] = Field(default=None)
    patient_header: Optional[str] = Field(default=None, description="PATIENT line prepended to the prompt")


class Visit(BaseModel):
    """A completed encounter as persisted by the visit store"""
    id: str
    date: str
    template_name: str = Field(alias="templateName")
    patient_name: Optional[str] = Field(default=None, alias="patientName")
    patient_dob: Optional[str] = Field(default=None, alias="patientDob")
    note: str
    transcript: str

    model_config = ConfigDict(populate_by_name=True)
