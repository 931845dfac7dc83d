"""Flat projections of FHIR resources.

Projections are best effort: a missing or wrongly typed field becomes
``None`` and never fails the whole search.
"""

from datetime import date, datetime
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

SummaryT = TypeVar("SummaryT", bound=BaseModel)


class PatientSummary(BaseModel):
    id: str | None = None
    name: str | None = None
    given: str | None = None
    family: str | None = None
    gender: str | None = None
    birth_date: date | None = None
    phone_number: str | None = None
    communication_language: str | None = None


class EncounterSummary(BaseModel):
    id: str | None = None
    patient_id: str | None = None
    resource_type: str | None = None
    status: str | None = None
    type: str | None = None
    service_type: str | None = None
    priority: str | None = None
    period_start: datetime | None = None
    reason_code: str | None = None
    location: str | None = None
    service_provider: str | None = None


class AllergyIntoleranceSummary(BaseModel):
    id: str | None = None
    patient_id: str | None = None
    code: str | None = None
    clinical_status: str | None = None
    verification_status: str | None = None
    criticality: str | None = None
    category: str | None = None
    recorded_date: datetime | None = None
    reaction: str | None = None


class ResourceRecord(BaseModel, Generic[SummaryT]):
    """A summary paired with the raw resource it was projected from."""

    raw: dict[str, Any]
    summary: SummaryT


def _get(obj: Any, key: str) -> Any:
    return obj.get(key) if isinstance(obj, dict) else None


def _first(obj: Any) -> Any:
    if isinstance(obj, list) and obj:
        return obj[0]
    return None


def _str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _parse_date(value: Any) -> date | None:
    if not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def _parse_datetime(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def _concept_text(concept: Any) -> str | None:
    """Text of a CodeableConcept, falling back to its first coding."""
    text = _str(_get(concept, "text"))
    if text is not None:
        return text
    coding = _first(_get(concept, "coding"))
    return _str(_get(coding, "display")) or _str(_get(coding, "code"))


def summarize_patient(resource: dict[str, Any]) -> PatientSummary:
    name = _first(_get(resource, "name"))
    given = _get(name, "given")
    given_text = None
    if isinstance(given, list):
        parts = [g for g in given if isinstance(g, str)]
        given_text = " ".join(parts) if parts else None

    return PatientSummary(
        id=_str(_get(resource, "id")),
        name=_str(_get(name, "text")),
        given=given_text,
        family=_str(_get(name, "family")),
        gender=_str(_get(resource, "gender")),
        birth_date=_parse_date(_get(resource, "birthDate")),
        phone_number=_str(_get(_first(_get(resource, "telecom")), "value")),
        communication_language=_str(
            _get(_get(_first(_get(resource, "communication")), "language"), "text")
        ),
    )


def summarize_encounter(
    resource: dict[str, Any], patient_id: str | None = None
) -> EncounterSummary:
    return EncounterSummary(
        id=_str(_get(resource, "id")),
        patient_id=patient_id,
        resource_type=_str(_get(resource, "resourceType")),
        status=_str(_get(resource, "status")),
        type=_str(_get(_first(_get(resource, "type")), "text")),
        service_type=_str(_get(_get(resource, "serviceType"), "text")),
        priority=_str(_get(_get(resource, "priority"), "text")),
        period_start=_parse_datetime(_get(_get(resource, "period"), "start")),
        reason_code=_str(_get(_first(_get(resource, "reasonCode")), "text")),
        location=_str(
            _get(_get(_first(_get(resource, "location")), "location"), "display")
        ),
        service_provider=_str(_get(_get(resource, "serviceProvider"), "display")),
    )


def summarize_allergy_intolerance(
    resource: dict[str, Any], patient_id: str | None = None
) -> AllergyIntoleranceSummary:
    reaction = _first(_get(resource, "reaction"))
    return AllergyIntoleranceSummary(
        id=_str(_get(resource, "id")),
        patient_id=patient_id,
        code=_concept_text(_get(resource, "code")),
        clinical_status=_concept_text(_get(resource, "clinicalStatus")),
        verification_status=_concept_text(_get(resource, "verificationStatus")),
        criticality=_str(_get(resource, "criticality")),
        category=_str(_first(_get(resource, "category"))),
        recorded_date=_parse_datetime(_get(resource, "recordedDate")),
        reaction=_concept_text(_first(_get(reaction, "manifestation"))),
    )
