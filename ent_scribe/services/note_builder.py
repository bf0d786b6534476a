"""
Note request construction
"""

from typing import Optional, Union

from ent_scribe.models.domain import NoteRequest, PatientInfo, Template


def _clean(value: Optional[str]) -> Optional[str]:
    value = (value or "").strip()
    return value or None


def patient_header(name: Optional[str], dob: Optional[str] = None) -> Optional[str]:
    """'PATIENT: <name>[, DOB: <dob>]', or None without a name (a DOB alone is not shown)."""
    name = _clean(name)
    if not name:
        return None
    dob = _clean(dob)
    return f"PATIENT: {name}, DOB: {dob}" if dob else f"PATIENT: {name}"


class NoteRequestBuilder:
    """Pure assembly of the generation payload from a finalized transcript."""

    def build(
        self,
        transcript: str,
        template: Union[Template, str],
        patient: Optional[PatientInfo] = None,
    ) -> NoteRequest:
        if not transcript or not transcript.strip():
            raise ValueError("A note request needs a non-empty transcript")
        template_body = template.content if isinstance(template, Template) else template
        if not template_body or not template_body.strip():
            raise ValueError("A note request needs a template body")

        name = _clean(patient.name) if patient else None
        dob = _clean(patient.dob) if patient else None
        return NoteRequest(
            transcript=transcript,
            template_body=template_body,
            patient_name=name,
            patient_dob=dob,
            patient_header=patient_header(name, dob),
        )
