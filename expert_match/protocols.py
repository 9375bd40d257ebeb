from __future__ import annotations

from typing import Any, Iterable, Protocol, Sequence

from .graph_queries import GraphQuery
from .models import (
    ClinicalExperience,
    ConsultationMatch,
    Doctor,
    Facility,
    MedicalCase,
)


class CaseRepository(Protocol):
    def find_cases_by_ids(self, case_ids: Iterable[str]) -> dict[str, MedicalCase]:
        ...

    def find_case_ids(self, *, case_type: str | None = None, limit: int = 200) -> list[str]:
        ...

    def find_case_embeddings(self, case_ids: Iterable[str]) -> dict[str, list[float]]:
        ...

    def save_case_embedding(self, case_id: str, embedding: Sequence[float]) -> None:
        ...


class DoctorRepository(Protocol):
    def find_doctors_by_ids(self, doctor_ids: Iterable[str]) -> dict[str, Doctor]:
        ...

    def find_doctors_by_specialties(
        self,
        specialties: Iterable[str],
        *,
        limit: int,
        telehealth_only: bool = False,
        facility_ids: Iterable[str] = (),
        capabilities: Iterable[str] = (),
    ) -> dict[str, Doctor]:
        ...

    def find_doctor_ids(
        self,
        *,
        limit: int,
        telehealth_only: bool = False,
        facility_ids: Iterable[str] = (),
        capabilities: Iterable[str] = (),
    ) -> list[str]:
        ...

    def find_doctor_ids_by_facility_ids(
        self, facility_ids: Iterable[str], *, limit_per_facility: int
    ) -> dict[str, list[str]]:
        ...

    def count_doctors_by_specialty(self, specialties: Iterable[str]) -> dict[str, int]:
        ...


class FacilityRepository(Protocol):
    def find_facilities_by_ids(self, facility_ids: Iterable[str]) -> dict[str, Facility]:
        ...

    def find_facilities(
        self,
        *,
        facility_types: Iterable[str] = (),
        capabilities: Iterable[str] = (),
        limit: int,
    ) -> dict[str, Facility]:
        ...


class ExperienceRepository(Protocol):
    def find_experiences_by_doctor_ids(
        self, doctor_ids: Iterable[str]
    ) -> dict[str, list[ClinicalExperience]]:
        ...


class MatchRepository(Protocol):
    def replace_consultation_matches(
        self, case_id: str, matches: Sequence[ConsultationMatch]
    ) -> None:
        ...


class MatchingRepository(
    CaseRepository,
    DoctorRepository,
    FacilityRepository,
    ExperienceRepository,
    MatchRepository,
    Protocol,
):
    pass


class GraphBackend(Protocol):
    def execute(self, query: GraphQuery) -> list[dict[str, Any]]:
        ...

    def exists(self) -> bool:
        ...

    def create_if_not_exists(self) -> None:
        ...


class EmbeddingBackend(Protocol):
    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        ...


class CaseDescriber(Protocol):
    def describe(self, case: MedicalCase) -> str:
        ...
