from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class UrgencyLevel(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class CaseType(str, Enum):
    INPATIENT = "INPATIENT"
    SECOND_OPINION = "SECOND_OPINION"
    CONSULT_REQUEST = "CONSULT_REQUEST"


URGENCY_VALUE = {
    UrgencyLevel.CRITICAL: 1.0,
    UrgencyLevel.HIGH: 0.75,
    UrgencyLevel.MEDIUM: 0.5,
    UrgencyLevel.LOW: 0.25,
}


def parse_urgency(value: UrgencyLevel | str | None) -> UrgencyLevel | None:
    if value is None or isinstance(value, UrgencyLevel):
        return value
    try:
        return UrgencyLevel(value.strip().upper())
    except ValueError:
        return None


def parse_case_type(value: CaseType | str | None) -> CaseType | None:
    if value is None or isinstance(value, CaseType):
        return value
    try:
        return CaseType(value.strip().upper())
    except ValueError:
        return None


def normalize_id(value: str | None) -> str:
    return (value or "").strip().lower()


@dataclass
class MedicalCase:
    id: str
    chief_complaint: str = ""
    symptoms: str = ""
    current_diagnosis: str = ""
    icd10_codes: list[str] = field(default_factory=list)
    snomed_codes: list[str] = field(default_factory=list)
    urgency_level: Optional[UrgencyLevel] = None
    required_specialty: str = ""
    case_type: Optional[CaseType] = None
    patient_age: Optional[int] = None
    additional_notes: str = ""
    abstract_text: str = ""
    embedding: Optional[list[float]] = None

    @property
    def distinct_icd10_codes(self) -> list[str]:
        seen: dict[str, None] = {}
        for code in self.icd10_codes:
            cleaned = code.strip().upper()
            if cleaned:
                seen.setdefault(cleaned, None)
        return list(seen)


@dataclass(frozen=True)
class Doctor:
    id: str
    name: str
    email: str = ""
    specialties: list[str] = field(default_factory=list)
    certifications: list[str] = field(default_factory=list)
    facility_ids: list[str] = field(default_factory=list)
    telehealth_enabled: bool = False
    availability_status: str = "AVAILABLE"

    @property
    def is_available(self) -> bool:
        return self.availability_status.strip().upper() == "AVAILABLE"


@dataclass(frozen=True)
class Facility:
    id: str
    name: str
    facility_type: str = ""
    location_city: str = ""
    location_state: str = ""
    location_country: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    capabilities: list[str] = field(default_factory=list)
    capacity: Optional[int] = None
    current_occupancy: Optional[int] = None


@dataclass(frozen=True)
class ClinicalExperience:
    id: str
    doctor_id: str
    case_id: str
    procedures_performed: list[str] = field(default_factory=list)
    complexity_level: str = ""
    outcome: str = ""
    complications: list[str] = field(default_factory=list)
    time_to_resolution_days: Optional[int] = None
    rating: Optional[int] = None


@dataclass(frozen=True)
class MedicalSpecialty:
    id: str
    name: str
    normalized_name: str = ""
    description: str = ""
    icd10_code_ranges: list[str] = field(default_factory=list)
    related_specialty_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ComponentScore:
    name: str
    value: Optional[float]
    weight: float

    def __post_init__(self) -> None:
        if self.value is not None:
            object.__setattr__(self, "value", min(1.0, max(0.0, float(self.value))))

    @property
    def known(self) -> bool:
        return self.value is not None


@dataclass(frozen=True)
class CompositeScore:
    overall_score: float
    components: tuple[ComponentScore, ...]
    rationale: str
    missing: tuple[str, ...] = ()

    def component(self, name: str) -> ComponentScore | None:
        for item in self.components:
            if item.name == name:
                return item
        return None


Candidate = Union[Doctor, Facility]


@dataclass(frozen=True)
class RankedMatch:
    candidate: Candidate
    score: CompositeScore
    rank: int

    @property
    def candidate_id(self) -> str:
        return self.candidate.id

    @property
    def rationale(self) -> str:
        return self.score.rationale


@dataclass(frozen=True)
class ConsultationMatch:
    id: str
    case_id: str
    doctor_id: str
    match_score: float
    rationale: str
    rank: int
    status: str = "PENDING"


@dataclass(frozen=True)
class PrioritizedCase:
    case_id: str
    score: CompositeScore
    rank: int
    urgency_level: Optional[UrgencyLevel] = None


class MatchOptions(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    max_results: Optional[int] = 10
    min_score: Optional[float] = Field(default=None, ge=0.0, le=100.0)
    preferred_specialties: list[str] = Field(default_factory=list)
    require_telehealth: bool = False
    preferred_facility_ids: list[str] = Field(default_factory=list)
    required_capabilities: list[str] = Field(default_factory=list)
    include_excluded: bool = False

    @field_validator("max_results")
    @classmethod
    def _default_non_positive(cls, value: Optional[int]) -> int:
        if value is None or value <= 0:
            return 10
        return value


class RoutingOptions(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    max_results: Optional[int] = 5
    min_score: Optional[float] = Field(default=None, ge=0.0, le=100.0)
    preferred_facility_types: list[str] = Field(default_factory=list)
    required_capabilities: list[str] = Field(default_factory=list)
    max_distance_km: Optional[float] = Field(default=None, ge=0.0)
    origin_latitude: Optional[float] = Field(default=None, ge=-90.0, le=90.0)
    origin_longitude: Optional[float] = Field(default=None, ge=-180.0, le=180.0)
    include_excluded: bool = False

    @field_validator("max_results")
    @classmethod
    def _default_non_positive(cls, value: Optional[int]) -> int:
        if value is None or value <= 0:
            return 5
        return value

    @property
    def has_origin(self) -> bool:
        return self.origin_latitude is not None and self.origin_longitude is not None
