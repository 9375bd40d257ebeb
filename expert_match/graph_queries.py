from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

DIRECT_RELATIONSHIP = "direct_relationship"
CONDITION_EXPERTISE = "condition_expertise"
SPECIALIZATION = "specialization"
RELATED_SPECIALIZATION = "related_specialization"
SIMILAR_CASES = "similar_cases"

CYPHER_TEMPLATES = {
    DIRECT_RELATIONSHIP: """
        MATCH (d:Doctor {id: $doctorId})-[r:TREATED|CONSULTED_ON]->(c:MedicalCase {id: $caseId})
        RETURN count(r) AS relationships
    """,
    CONDITION_EXPERTISE: """
        MATCH (d:Doctor {id: $doctorId})-[:TREATS_CONDITION]->(i:ICD10Code)
        WHERE i.code IN $icd10Codes
        RETURN count(DISTINCT i.code) AS matched
    """,
    SPECIALIZATION: """
        MATCH (d:Doctor {id: $doctorId})-[:SPECIALIZES_IN]->(s:MedicalSpecialty)
        WHERE toLower(s.name) = toLower($specialty)
        RETURN count(s) AS direct
    """,
    RELATED_SPECIALIZATION: """
        MATCH (d:Doctor {id: $doctorId})-[:SPECIALIZES_IN]->(:MedicalSpecialty)
              -[:RELATED_TO]-(s:MedicalSpecialty)
        WHERE toLower(s.name) = toLower($specialty)
        RETURN count(s) AS related
    """,
    SIMILAR_CASES: """
        MATCH (d:Doctor {id: $doctorId})-[:TREATED]->(c:MedicalCase)-[:HAS_CONDITION]->(i:ICD10Code)
        WHERE i.code IN $icd10Codes AND c.id <> $caseId
        RETURN count(DISTINCT c.id) AS similar
    """,
}


@dataclass(frozen=True)
class GraphQuery:
    name: str
    params: dict[str, Any] = field(default_factory=dict)

    @property
    def cypher(self) -> str:
        return " ".join(CYPHER_TEMPLATES[self.name].split())


def direct_relationship(doctor_id: str, case_id: str) -> GraphQuery:
    return GraphQuery(DIRECT_RELATIONSHIP, {"doctorId": doctor_id, "caseId": case_id})


def condition_expertise(doctor_id: str, icd10_codes: list[str]) -> GraphQuery:
    return GraphQuery(CONDITION_EXPERTISE, {"doctorId": doctor_id, "icd10Codes": list(icd10_codes)})


def specialization(doctor_id: str, specialty: str) -> GraphQuery:
    return GraphQuery(SPECIALIZATION, {"doctorId": doctor_id, "specialty": specialty})


def related_specialization(doctor_id: str, specialty: str) -> GraphQuery:
    return GraphQuery(RELATED_SPECIALIZATION, {"doctorId": doctor_id, "specialty": specialty})


def similar_cases(doctor_id: str, icd10_codes: list[str], exclude_case_id: str = "") -> GraphQuery:
    return GraphQuery(
        SIMILAR_CASES,
        {"doctorId": doctor_id, "icd10Codes": list(icd10_codes), "caseId": exclude_case_id},
    )


def first_count(rows: list[dict[str, Any]], key: str) -> int:
    if not rows:
        return 0
    value = rows[0].get(key, 0)
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0
