from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator, Sequence

from .models import (
    ClinicalExperience,
    ConsultationMatch,
    Doctor,
    Facility,
    MedicalCase,
    MedicalSpecialty,
    normalize_id,
    parse_case_type,
    parse_urgency,
)

IN_CLAUSE_CHUNK = 500


def _chunks(values: Sequence[str], size: int = IN_CLAUSE_CHUNK) -> Iterator[Sequence[str]]:
    for start in range(0, len(values), size):
        yield values[start : start + size]


def _placeholders(count: int) -> str:
    return ",".join("?" for _ in range(count))


def _dedupe(values: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(v for v in values if v))


def _normalize_label(value: str) -> str:
    return " ".join(value.strip().lower().split())


def _doctor_filters(
    *,
    telehealth_only: bool,
    facility_ids: Iterable[str],
    capabilities: Iterable[str],
) -> tuple[list[str], list[Any]]:
    """WHERE clauses over ``doctors d``; a capability matches a specialty or a certification."""
    clauses: list[str] = []
    params: list[Any] = []
    if telehealth_only:
        clauses.append("d.telehealth_enabled = 1")
    facilities = _dedupe(f.strip() for f in facility_ids)
    if facilities:
        clauses.append(
            f"""
            EXISTS (SELECT 1 FROM doctor_facilities df
                    WHERE df.doctor_id = d.id AND df.facility_id IN ({_placeholders(len(facilities))}))
            """
        )
        params.extend(facilities)
    for capability in _dedupe(_normalize_label(c) for c in capabilities):
        clauses.append(
            """
            (EXISTS (SELECT 1 FROM doctor_specialties dsc
                     WHERE dsc.doctor_id = d.id AND dsc.specialty = ?)
             OR EXISTS (SELECT 1 FROM doctor_certifications dc
                        WHERE dc.doctor_id = d.id AND dc.certification = ?))
            """
        )
        params.extend([capability, capability])
    return clauses, params


class SQLiteRepository:
    def __init__(self, db_path: str) -> None:
        self.db_path = str(Path(db_path))

    def connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    @contextmanager
    def _managed_conn(self, conn: sqlite3.Connection | None):
        if conn is not None:
            yield conn
            return
        with self.connect() as local_conn:
            yield local_conn

    def init_db(self) -> None:
        schema = """
        CREATE TABLE IF NOT EXISTS medical_cases (
            id TEXT PRIMARY KEY,
            patient_age INTEGER,
            chief_complaint TEXT NOT NULL DEFAULT '',
            symptoms TEXT NOT NULL DEFAULT '',
            current_diagnosis TEXT NOT NULL DEFAULT '',
            icd10_codes TEXT NOT NULL DEFAULT '[]',
            snomed_codes TEXT NOT NULL DEFAULT '[]',
            urgency_level TEXT,
            required_specialty TEXT NOT NULL DEFAULT '',
            case_type TEXT,
            additional_notes TEXT NOT NULL DEFAULT '',
            abstract_text TEXT NOT NULL DEFAULT '',
            embedding TEXT,
            created_at TEXT NOT NULL DEFAULT (datetime('now'))
        );

        CREATE TABLE IF NOT EXISTS doctors (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            email TEXT NOT NULL DEFAULT '',
            specialties TEXT NOT NULL DEFAULT '[]',
            certifications TEXT NOT NULL DEFAULT '[]',
            facility_ids TEXT NOT NULL DEFAULT '[]',
            telehealth_enabled INTEGER NOT NULL DEFAULT 0,
            availability_status TEXT NOT NULL DEFAULT 'AVAILABLE'
        );

        CREATE TABLE IF NOT EXISTS doctor_specialties (
            doctor_id TEXT NOT NULL,
            specialty TEXT NOT NULL,
            PRIMARY KEY (doctor_id, specialty),
            FOREIGN KEY(doctor_id) REFERENCES doctors(id) ON DELETE CASCADE
        );

        CREATE TABLE IF NOT EXISTS doctor_facilities (
            doctor_id TEXT NOT NULL,
            facility_id TEXT NOT NULL,
            PRIMARY KEY (doctor_id, facility_id),
            FOREIGN KEY(doctor_id) REFERENCES doctors(id) ON DELETE CASCADE
        );

        CREATE TABLE IF NOT EXISTS doctor_certifications (
            doctor_id TEXT NOT NULL,
            certification TEXT NOT NULL,
            PRIMARY KEY (doctor_id, certification),
            FOREIGN KEY(doctor_id) REFERENCES doctors(id) ON DELETE CASCADE
        );

        CREATE TABLE IF NOT EXISTS facilities (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            facility_type TEXT NOT NULL DEFAULT '',
            location_city TEXT NOT NULL DEFAULT '',
            location_state TEXT NOT NULL DEFAULT '',
            location_country TEXT NOT NULL DEFAULT '',
            latitude REAL,
            longitude REAL,
            capabilities TEXT NOT NULL DEFAULT '[]',
            capacity INTEGER,
            current_occupancy INTEGER
        );

        CREATE TABLE IF NOT EXISTS facility_capabilities (
            facility_id TEXT NOT NULL,
            capability TEXT NOT NULL,
            PRIMARY KEY (facility_id, capability),
            FOREIGN KEY(facility_id) REFERENCES facilities(id) ON DELETE CASCADE
        );

        CREATE TABLE IF NOT EXISTS clinical_experiences (
            id TEXT PRIMARY KEY,
            doctor_id TEXT NOT NULL,
            case_id TEXT NOT NULL,
            procedures_performed TEXT NOT NULL DEFAULT '[]',
            complexity_level TEXT NOT NULL DEFAULT '',
            outcome TEXT NOT NULL DEFAULT '',
            complications TEXT NOT NULL DEFAULT '[]',
            time_to_resolution_days INTEGER,
            rating INTEGER CHECK (rating IS NULL OR (rating BETWEEN 1 AND 5)),
            FOREIGN KEY(doctor_id) REFERENCES doctors(id)
        );

        CREATE TABLE IF NOT EXISTS medical_specialties (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            normalized_name TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            icd10_code_ranges TEXT NOT NULL DEFAULT '[]',
            related_specialty_ids TEXT NOT NULL DEFAULT '[]'
        );

        CREATE TABLE IF NOT EXISTS consultation_matches (
            id TEXT PRIMARY KEY,
            case_id TEXT NOT NULL,
            doctor_id TEXT NOT NULL,
            match_score REAL NOT NULL,
            match_rationale TEXT NOT NULL,
            rank INTEGER NOT NULL,
            status TEXT NOT NULL DEFAULT 'PENDING',
            created_at TEXT NOT NULL DEFAULT (datetime('now')),
            FOREIGN KEY(case_id) REFERENCES medical_cases(id)
        );

        CREATE INDEX IF NOT EXISTS idx_doctor_specialties_specialty
            ON doctor_specialties(specialty);
        CREATE INDEX IF NOT EXISTS idx_doctor_facilities_facility
            ON doctor_facilities(facility_id);
        CREATE INDEX IF NOT EXISTS idx_experiences_doctor
            ON clinical_experiences(doctor_id);
        CREATE INDEX IF NOT EXISTS idx_matches_case
            ON consultation_matches(case_id);
        """
        with self.connect() as conn:
            conn.executescript(schema)

    # Writes

    def upsert_case(self, case: MedicalCase, conn: sqlite3.Connection | None = None) -> str:
        case_id = normalize_id(case.id)
        with self._managed_conn(conn) as db:
            db.execute(
                """
                INSERT INTO medical_cases (
                    id, patient_age, chief_complaint, symptoms, current_diagnosis,
                    icd10_codes, snomed_codes, urgency_level, required_specialty,
                    case_type, additional_notes, abstract_text, embedding
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    patient_age = excluded.patient_age,
                    chief_complaint = excluded.chief_complaint,
                    symptoms = excluded.symptoms,
                    current_diagnosis = excluded.current_diagnosis,
                    icd10_codes = excluded.icd10_codes,
                    snomed_codes = excluded.snomed_codes,
                    urgency_level = excluded.urgency_level,
                    required_specialty = excluded.required_specialty,
                    case_type = excluded.case_type,
                    additional_notes = excluded.additional_notes,
                    abstract_text = excluded.abstract_text,
                    embedding = COALESCE(excluded.embedding, medical_cases.embedding);
                """,
                (
                    case_id,
                    case.patient_age,
                    case.chief_complaint,
                    case.symptoms,
                    case.current_diagnosis,
                    json.dumps(case.icd10_codes),
                    json.dumps(case.snomed_codes),
                    case.urgency_level.value if case.urgency_level else None,
                    case.required_specialty,
                    case.case_type.value if case.case_type else None,
                    case.additional_notes,
                    case.abstract_text,
                    json.dumps(case.embedding) if case.embedding is not None else None,
                ),
            )
        return case_id

    def upsert_doctor(self, doctor: Doctor, conn: sqlite3.Connection | None = None) -> None:
        with self._managed_conn(conn) as db:
            db.execute(
                """
                INSERT INTO doctors (
                    id, name, email, specialties, certifications, facility_ids,
                    telehealth_enabled, availability_status
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    email = excluded.email,
                    specialties = excluded.specialties,
                    certifications = excluded.certifications,
                    facility_ids = excluded.facility_ids,
                    telehealth_enabled = excluded.telehealth_enabled,
                    availability_status = excluded.availability_status;
                """,
                (
                    doctor.id,
                    doctor.name,
                    doctor.email,
                    json.dumps(doctor.specialties),
                    json.dumps(doctor.certifications),
                    json.dumps(doctor.facility_ids),
                    int(doctor.telehealth_enabled),
                    doctor.availability_status,
                ),
            )
            db.execute("DELETE FROM doctor_specialties WHERE doctor_id = ?;", (doctor.id,))
            db.executemany(
                "INSERT OR IGNORE INTO doctor_specialties (doctor_id, specialty) VALUES (?, ?);",
                [(doctor.id, _normalize_label(s)) for s in doctor.specialties if s.strip()],
            )
            db.execute("DELETE FROM doctor_facilities WHERE doctor_id = ?;", (doctor.id,))
            db.executemany(
                "INSERT OR IGNORE INTO doctor_facilities (doctor_id, facility_id) VALUES (?, ?);",
                [(doctor.id, f.strip()) for f in doctor.facility_ids if f.strip()],
            )
            db.execute("DELETE FROM doctor_certifications WHERE doctor_id = ?;", (doctor.id,))
            db.executemany(
                "INSERT OR IGNORE INTO doctor_certifications (doctor_id, certification) VALUES (?, ?);",
                [(doctor.id, _normalize_label(c)) for c in doctor.certifications if c.strip()],
            )

    def upsert_facility(self, facility: Facility, conn: sqlite3.Connection | None = None) -> None:
        with self._managed_conn(conn) as db:
            db.execute(
                """
                INSERT INTO facilities (
                    id, name, facility_type, location_city, location_state,
                    location_country, latitude, longitude, capabilities,
                    capacity, current_occupancy
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    facility_type = excluded.facility_type,
                    location_city = excluded.location_city,
                    location_state = excluded.location_state,
                    location_country = excluded.location_country,
                    latitude = excluded.latitude,
                    longitude = excluded.longitude,
                    capabilities = excluded.capabilities,
                    capacity = excluded.capacity,
                    current_occupancy = excluded.current_occupancy;
                """,
                (
                    facility.id,
                    facility.name,
                    facility.facility_type,
                    facility.location_city,
                    facility.location_state,
                    facility.location_country,
                    facility.latitude,
                    facility.longitude,
                    json.dumps(facility.capabilities),
                    facility.capacity,
                    facility.current_occupancy,
                ),
            )
            db.execute("DELETE FROM facility_capabilities WHERE facility_id = ?;", (facility.id,))
            db.executemany(
                "INSERT OR IGNORE INTO facility_capabilities (facility_id, capability) VALUES (?, ?);",
                [(facility.id, _normalize_label(c)) for c in facility.capabilities if c.strip()],
            )

    def add_experience(
        self, experience: ClinicalExperience, conn: sqlite3.Connection | None = None
    ) -> None:
        with self._managed_conn(conn) as db:
            db.execute(
                """
                INSERT OR REPLACE INTO clinical_experiences (
                    id, doctor_id, case_id, procedures_performed, complexity_level,
                    outcome, complications, time_to_resolution_days, rating
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    experience.id,
                    experience.doctor_id,
                    normalize_id(experience.case_id),
                    json.dumps(experience.procedures_performed),
                    experience.complexity_level,
                    experience.outcome,
                    json.dumps(experience.complications),
                    experience.time_to_resolution_days,
                    experience.rating,
                ),
            )

    def upsert_specialty(
        self, specialty: MedicalSpecialty, conn: sqlite3.Connection | None = None
    ) -> None:
        with self._managed_conn(conn) as db:
            db.execute(
                """
                INSERT OR REPLACE INTO medical_specialties (
                    id, name, normalized_name, description, icd10_code_ranges,
                    related_specialty_ids
                ) VALUES (?, ?, ?, ?, ?, ?);
                """,
                (
                    specialty.id,
                    specialty.name,
                    specialty.normalized_name or _normalize_label(specialty.name),
                    specialty.description,
                    json.dumps(specialty.icd10_code_ranges),
                    json.dumps(specialty.related_specialty_ids),
                ),
            )

    def save_case_embedding(
        self,
        case_id: str,
        embedding: Sequence[float],
        conn: sqlite3.Connection | None = None,
    ) -> None:
        with self._managed_conn(conn) as db:
            db.execute(
                "UPDATE medical_cases SET embedding = ? WHERE id = ?;",
                (json.dumps([float(v) for v in embedding]), normalize_id(case_id)),
            )

    def replace_consultation_matches(
        self,
        case_id: str,
        matches: Sequence[ConsultationMatch],
        conn: sqlite3.Connection | None = None,
    ) -> None:
        with self._managed_conn(conn) as db:
            db.execute(
                "DELETE FROM consultation_matches WHERE case_id = ?;",
                (normalize_id(case_id),),
            )
            db.executemany(
                """
                INSERT INTO consultation_matches (
                    id, case_id, doctor_id, match_score, match_rationale, rank, status
                ) VALUES (?, ?, ?, ?, ?, ?, ?);
                """,
                [
                    (
                        m.id,
                        normalize_id(m.case_id),
                        m.doctor_id,
                        m.match_score,
                        m.rationale,
                        m.rank,
                        m.status,
                    )
                    for m in matches
                ],
            )

    # Reads

    def find_cases_by_ids(
        self, case_ids: Iterable[str], conn: sqlite3.Connection | None = None
    ) -> dict[str, MedicalCase]:
        ids = _dedupe(normalize_id(c) for c in case_ids)
        found: dict[str, MedicalCase] = {}
        with self._managed_conn(conn) as db:
            for chunk in _chunks(ids):
                rows = db.execute(
                    f"SELECT * FROM medical_cases WHERE id IN ({_placeholders(len(chunk))});",
                    tuple(chunk),
                ).fetchall()
                for row in rows:
                    found[row["id"]] = self._row_to_case(row)
        return found

    def find_case_ids(
        self,
        *,
        case_type: str | None = None,
        limit: int = 200,
        conn: sqlite3.Connection | None = None,
    ) -> list[str]:
        with self._managed_conn(conn) as db:
            if case_type:
                rows = db.execute(
                    "SELECT id FROM medical_cases WHERE case_type = ? ORDER BY id LIMIT ?;",
                    (case_type.upper(), limit),
                ).fetchall()
            else:
                rows = db.execute(
                    "SELECT id FROM medical_cases ORDER BY id LIMIT ?;",
                    (limit,),
                ).fetchall()
        return [row["id"] for row in rows]

    def find_case_embeddings(
        self, case_ids: Iterable[str], conn: sqlite3.Connection | None = None
    ) -> dict[str, list[float]]:
        ids = _dedupe(normalize_id(c) for c in case_ids)
        found: dict[str, list[float]] = {}
        with self._managed_conn(conn) as db:
            for chunk in _chunks(ids):
                rows = db.execute(
                    f"""
                    SELECT id, embedding FROM medical_cases
                    WHERE embedding IS NOT NULL AND id IN ({_placeholders(len(chunk))});
                    """,
                    tuple(chunk),
                ).fetchall()
                for row in rows:
                    found[row["id"]] = [float(v) for v in json.loads(row["embedding"])]
        return found

    def find_doctors_by_ids(
        self, doctor_ids: Iterable[str], conn: sqlite3.Connection | None = None
    ) -> dict[str, Doctor]:
        ids = _dedupe(doctor_ids)
        found: dict[str, Doctor] = {}
        with self._managed_conn(conn) as db:
            for chunk in _chunks(ids):
                rows = db.execute(
                    f"SELECT * FROM doctors WHERE id IN ({_placeholders(len(chunk))});",
                    tuple(chunk),
                ).fetchall()
                for row in rows:
                    found[row["id"]] = self._row_to_doctor(row)
        return found

    def find_doctors_by_specialties(
        self,
        specialties: Iterable[str],
        *,
        limit: int,
        telehealth_only: bool = False,
        facility_ids: Iterable[str] = (),
        capabilities: Iterable[str] = (),
        conn: sqlite3.Connection | None = None,
    ) -> dict[str, Doctor]:
        labels = _dedupe(_normalize_label(s) for s in specialties)
        if not labels:
            return {}
        clauses, params = _doctor_filters(
            telehealth_only=telehealth_only, facility_ids=facility_ids, capabilities=capabilities
        )
        clauses.insert(
            0,
            f"""
            EXISTS (SELECT 1 FROM doctor_specialties ds
                    WHERE ds.doctor_id = d.id AND ds.specialty IN ({_placeholders(len(labels))}))
            """,
        )
        with self._managed_conn(conn) as db:
            rows = db.execute(
                f"SELECT d.* FROM doctors d WHERE {' AND '.join(clauses)} ORDER BY d.id LIMIT ?;",
                (*labels, *params, limit),
            ).fetchall()
        return {row["id"]: self._row_to_doctor(row) for row in rows}

    def find_doctor_ids(
        self,
        *,
        limit: int,
        telehealth_only: bool = False,
        facility_ids: Iterable[str] = (),
        capabilities: Iterable[str] = (),
        conn: sqlite3.Connection | None = None,
    ) -> list[str]:
        clauses, params = _doctor_filters(
            telehealth_only=telehealth_only, facility_ids=facility_ids, capabilities=capabilities
        )
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._managed_conn(conn) as db:
            rows = db.execute(
                f"SELECT d.id FROM doctors d {where} ORDER BY d.id LIMIT ?;",
                (*params, limit),
            ).fetchall()
        return [row["id"] for row in rows]

    def find_doctor_ids_by_facility_ids(
        self,
        facility_ids: Iterable[str],
        *,
        limit_per_facility: int,
        conn: sqlite3.Connection | None = None,
    ) -> dict[str, list[str]]:
        ids = _dedupe(facility_ids)
        found: dict[str, list[str]] = {facility_id: [] for facility_id in ids}
        with self._managed_conn(conn) as db:
            for chunk in _chunks(ids):
                rows = db.execute(
                    f"""
                    SELECT facility_id, doctor_id FROM doctor_facilities
                    WHERE facility_id IN ({_placeholders(len(chunk))})
                    ORDER BY facility_id, doctor_id;
                    """,
                    tuple(chunk),
                ).fetchall()
                for row in rows:
                    bucket = found[row["facility_id"]]
                    if len(bucket) < limit_per_facility:
                        bucket.append(row["doctor_id"])
        return found

    def count_doctors_by_specialty(
        self, specialties: Iterable[str], conn: sqlite3.Connection | None = None
    ) -> dict[str, int]:
        labels = _dedupe(_normalize_label(s) for s in specialties)
        counts = {label: 0 for label in labels}
        if not labels:
            return counts
        with self._managed_conn(conn) as db:
            rows = db.execute(
                f"""
                SELECT specialty, COUNT(DISTINCT doctor_id) AS doctors
                FROM doctor_specialties
                WHERE specialty IN ({_placeholders(len(labels))})
                GROUP BY specialty;
                """,
                tuple(labels),
            ).fetchall()
        for row in rows:
            counts[row["specialty"]] = int(row["doctors"])
        return counts

    def find_facilities_by_ids(
        self, facility_ids: Iterable[str], conn: sqlite3.Connection | None = None
    ) -> dict[str, Facility]:
        ids = _dedupe(facility_ids)
        found: dict[str, Facility] = {}
        with self._managed_conn(conn) as db:
            for chunk in _chunks(ids):
                rows = db.execute(
                    f"SELECT * FROM facilities WHERE id IN ({_placeholders(len(chunk))});",
                    tuple(chunk),
                ).fetchall()
                for row in rows:
                    found[row["id"]] = self._row_to_facility(row)
        return found

    def find_facilities(
        self,
        *,
        facility_types: Iterable[str] = (),
        capabilities: Iterable[str] = (),
        limit: int,
        conn: sqlite3.Connection | None = None,
    ) -> dict[str, Facility]:
        types = _dedupe(t.strip().upper() for t in facility_types)
        required = _dedupe(_normalize_label(c) for c in capabilities)
        clauses: list[str] = []
        params: list[Any] = []
        if types:
            clauses.append(f"UPPER(f.facility_type) IN ({_placeholders(len(types))})")
            params.extend(types)
        if required:
            clauses.append(
                f"""
                (SELECT COUNT(DISTINCT fc.capability) FROM facility_capabilities fc
                 WHERE fc.facility_id = f.id
                   AND fc.capability IN ({_placeholders(len(required))})) = ?
                """
            )
            params.extend(required)
            params.append(len(required))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._managed_conn(conn) as db:
            rows = db.execute(
                f"SELECT f.* FROM facilities f {where} ORDER BY f.id LIMIT ?;",
                (*params, limit),
            ).fetchall()
        return {row["id"]: self._row_to_facility(row) for row in rows}

    def find_experiences_by_doctor_ids(
        self, doctor_ids: Iterable[str], conn: sqlite3.Connection | None = None
    ) -> dict[str, list[ClinicalExperience]]:
        ids = _dedupe(doctor_ids)
        found: dict[str, list[ClinicalExperience]] = {doctor_id: [] for doctor_id in ids}
        with self._managed_conn(conn) as db:
            for chunk in _chunks(ids):
                rows = db.execute(
                    f"""
                    SELECT * FROM clinical_experiences
                    WHERE doctor_id IN ({_placeholders(len(chunk))})
                    ORDER BY doctor_id, id;
                    """,
                    tuple(chunk),
                ).fetchall()
                for row in rows:
                    found[row["doctor_id"]].append(self._row_to_experience(row))
        return found

    def list_consultation_matches(
        self, case_id: str, conn: sqlite3.Connection | None = None
    ) -> list[ConsultationMatch]:
        with self._managed_conn(conn) as db:
            rows = db.execute(
                "SELECT * FROM consultation_matches WHERE case_id = ? ORDER BY rank, doctor_id;",
                (normalize_id(case_id),),
            ).fetchall()
        return [
            ConsultationMatch(
                id=row["id"],
                case_id=row["case_id"],
                doctor_id=row["doctor_id"],
                match_score=float(row["match_score"]),
                rationale=row["match_rationale"],
                rank=int(row["rank"]),
                status=row["status"],
            )
            for row in rows
        ]

    # Graph export

    def iter_graph_source(self, conn: sqlite3.Connection | None = None) -> dict[str, list[dict[str, Any]]]:
        with self._managed_conn(conn) as db:
            return {
                "cases": [
                    {"id": row["id"], "icd10_codes": json.loads(row["icd10_codes"])}
                    for row in db.execute("SELECT id, icd10_codes FROM medical_cases;").fetchall()
                ],
                "doctor_specialties": [
                    dict(row)
                    for row in db.execute(
                        "SELECT doctor_id, specialty FROM doctor_specialties;"
                    ).fetchall()
                ],
                "experiences": [
                    dict(row)
                    for row in db.execute(
                        "SELECT doctor_id, case_id, outcome FROM clinical_experiences;"
                    ).fetchall()
                ],
                "specialties": [
                    {
                        "id": row["id"],
                        "normalized_name": row["normalized_name"],
                        "related_specialty_ids": json.loads(row["related_specialty_ids"]),
                    }
                    for row in db.execute(
                        "SELECT id, normalized_name, related_specialty_ids FROM medical_specialties;"
                    ).fetchall()
                ],
            }

    @staticmethod
    def _row_to_case(row: sqlite3.Row) -> MedicalCase:
        embedding = row["embedding"]
        return MedicalCase(
            id=row["id"],
            patient_age=row["patient_age"],
            chief_complaint=row["chief_complaint"],
            symptoms=row["symptoms"],
            current_diagnosis=row["current_diagnosis"],
            icd10_codes=json.loads(row["icd10_codes"]),
            snomed_codes=json.loads(row["snomed_codes"]),
            urgency_level=parse_urgency(row["urgency_level"]),
            required_specialty=row["required_specialty"],
            case_type=parse_case_type(row["case_type"]),
            additional_notes=row["additional_notes"],
            abstract_text=row["abstract_text"],
            embedding=[float(v) for v in json.loads(embedding)] if embedding else None,
        )

    @staticmethod
    def _row_to_doctor(row: sqlite3.Row) -> Doctor:
        return Doctor(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            specialties=json.loads(row["specialties"]),
            certifications=json.loads(row["certifications"]),
            facility_ids=json.loads(row["facility_ids"]),
            telehealth_enabled=bool(row["telehealth_enabled"]),
            availability_status=row["availability_status"],
        )

    @staticmethod
    def _row_to_facility(row: sqlite3.Row) -> Facility:
        return Facility(
            id=row["id"],
            name=row["name"],
            facility_type=row["facility_type"],
            location_city=row["location_city"],
            location_state=row["location_state"],
            location_country=row["location_country"],
            latitude=row["latitude"],
            longitude=row["longitude"],
            capabilities=json.loads(row["capabilities"]),
            capacity=row["capacity"],
            current_occupancy=row["current_occupancy"],
        )

    @staticmethod
    def _row_to_experience(row: sqlite3.Row) -> ClinicalExperience:
        return ClinicalExperience(
            id=row["id"],
            doctor_id=row["doctor_id"],
            case_id=row["case_id"],
            procedures_performed=json.loads(row["procedures_performed"]),
            complexity_level=row["complexity_level"],
            outcome=row["outcome"],
            complications=json.loads(row["complications"]),
            time_to_resolution_days=row["time_to_resolution_days"],
            rating=row["rating"],
        )
