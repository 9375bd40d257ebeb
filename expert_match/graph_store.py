from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable

from .database import SQLiteRepository
from .errors import ErrorCode, GraphQueryError
from .graph_queries import (
    CONDITION_EXPERTISE,
    DIRECT_RELATIONSHIP,
    RELATED_SPECIALIZATION,
    SIMILAR_CASES,
    SPECIALIZATION,
    GraphQuery,
)
from .models import normalize_id

logger = logging.getLogger(__name__)

DOCTOR = "Doctor"
CASE = "MedicalCase"
CODE = "ICD10Code"
SPECIALTY = "MedicalSpecialty"


def _label(value: str) -> str:
    return " ".join(value.strip().lower().split())


def _codes(values: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(v.strip().upper() for v in values if v and v.strip()))


def _placeholders(count: int) -> str:
    return ",".join("?" for _ in range(count))


class SQLiteGraphStore:
    """Property-graph edges kept in SQLite, answering the named match queries."""

    def __init__(self, db_path: str, graph_name: str = "medexpertmatch") -> None:
        self.db_path = str(Path(db_path))
        self.graph_name = graph_name

    def connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _managed_conn(self, conn: sqlite3.Connection | None):
        if conn is not None:
            yield conn
            return
        with self.connect() as local_conn:
            yield local_conn

    def create_if_not_exists(self) -> None:
        schema = """
        CREATE TABLE IF NOT EXISTS graph_meta (
            name TEXT PRIMARY KEY,
            created_at TEXT NOT NULL DEFAULT (datetime('now'))
        );

        CREATE TABLE IF NOT EXISTS graph_edges (
            graph TEXT NOT NULL,
            source_label TEXT NOT NULL,
            source_id TEXT NOT NULL,
            relationship TEXT NOT NULL,
            target_label TEXT NOT NULL,
            target_id TEXT NOT NULL,
            PRIMARY KEY (graph, source_label, source_id, relationship, target_label, target_id)
        );

        CREATE INDEX IF NOT EXISTS idx_graph_edges_target
            ON graph_edges(graph, relationship, target_id);
        """
        with self.connect() as conn:
            conn.executescript(schema)
            conn.execute(
                "INSERT OR IGNORE INTO graph_meta (name) VALUES (?);",
                (self.graph_name,),
            )

    def exists(self) -> bool:
        with self.connect() as conn:
            table = conn.execute(
                "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'graph_meta';"
            ).fetchone()
            if table is None:
                return False
            row = conn.execute(
                "SELECT 1 FROM graph_meta WHERE name = ?;",
                (self.graph_name,),
            ).fetchone()
        return row is not None

    def add_edge(
        self,
        source_label: str,
        source_id: str,
        relationship: str,
        target_label: str,
        target_id: str,
        conn: sqlite3.Connection | None = None,
    ) -> None:
        if source_label == CASE:
            source_id = normalize_id(source_id)
        if target_label == CASE:
            target_id = normalize_id(target_id)
        with self._managed_conn(conn) as db:
            db.execute(
                """
                INSERT OR IGNORE INTO graph_edges (
                    graph, source_label, source_id, relationship, target_label, target_id
                ) VALUES (?, ?, ?, ?, ?, ?);
                """,
                (self.graph_name, source_label, source_id, relationship, target_label, target_id),
            )

    def sync_from_repository(self, repository: SQLiteRepository) -> int:
        """Rebuild all edges from the relational store; returns the edge count."""
        self.create_if_not_exists()
        source = repository.iter_graph_source()
        case_codes = {normalize_id(c["id"]): _codes(c["icd10_codes"]) for c in source["cases"]}
        specialty_names = {s["id"]: s["normalized_name"] for s in source["specialties"]}

        edges: set[tuple[str, str, str, str, str]] = set()
        for case_id, codes in case_codes.items():
            for code in codes:
                edges.add((CASE, case_id, "HAS_CONDITION", CODE, code))
        for row in source["doctor_specialties"]:
            edges.add((DOCTOR, row["doctor_id"], "SPECIALIZES_IN", SPECIALTY, _label(row["specialty"])))
        for row in source["experiences"]:
            case_id = normalize_id(row["case_id"])
            edges.add((DOCTOR, row["doctor_id"], "TREATED", CASE, case_id))
            for code in case_codes.get(case_id, []):
                edges.add((DOCTOR, row["doctor_id"], "TREATS_CONDITION", CODE, code))
        for specialty in source["specialties"]:
            for related_id in specialty["related_specialty_ids"]:
                related_name = specialty_names.get(related_id)
                if related_name:
                    edges.add(
                        (SPECIALTY, specialty["normalized_name"], "RELATED_TO", SPECIALTY, related_name)
                    )

        with self.connect() as conn:
            conn.execute("DELETE FROM graph_edges WHERE graph = ?;", (self.graph_name,))
            conn.executemany(
                """
                INSERT OR IGNORE INTO graph_edges (
                    graph, source_label, source_id, relationship, target_label, target_id
                ) VALUES (?, ?, ?, ?, ?, ?);
                """,
                [(self.graph_name, *edge) for edge in sorted(edges)],
            )
        logger.info("Graph %s rebuilt with %s edges", self.graph_name, len(edges))
        return len(edges)

    def execute(self, query: GraphQuery) -> list[dict[str, Any]]:
        if not self.exists():
            raise GraphQueryError(
                f"Graph {self.graph_name} does not exist.",
                code=ErrorCode.GRAPH_NOT_EXISTS,
            )
        handler = {
            DIRECT_RELATIONSHIP: self._direct_relationship,
            CONDITION_EXPERTISE: self._condition_expertise,
            SPECIALIZATION: self._specialization,
            RELATED_SPECIALIZATION: self._related_specialization,
            SIMILAR_CASES: self._similar_cases,
        }.get(query.name)
        if handler is None:
            raise GraphQueryError(f"Unsupported graph query: {query.name}")
        try:
            with self.connect() as conn:
                return handler(conn, query.params)
        except sqlite3.Error as exc:
            raise GraphQueryError(f"Graph query {query.name} failed: {exc}") from exc

    def _direct_relationship(self, conn: sqlite3.Connection, params: dict[str, Any]) -> list[dict[str, Any]]:
        row = conn.execute(
            """
            SELECT COUNT(*) AS relationships FROM graph_edges
            WHERE graph = ? AND source_label = ? AND source_id = ?
              AND relationship IN ('TREATED', 'CONSULTED_ON')
              AND target_label = ? AND target_id = ?;
            """,
            (self.graph_name, DOCTOR, params["doctorId"], CASE, normalize_id(params["caseId"])),
        ).fetchone()
        return [{"relationships": row["relationships"]}]

    def _condition_expertise(self, conn: sqlite3.Connection, params: dict[str, Any]) -> list[dict[str, Any]]:
        codes = _codes(params.get("icd10Codes", []))
        if not codes:
            return [{"matched": 0}]
        row = conn.execute(
            f"""
            SELECT COUNT(DISTINCT target_id) AS matched FROM graph_edges
            WHERE graph = ? AND source_label = ? AND source_id = ?
              AND relationship = 'TREATS_CONDITION'
              AND target_id IN ({_placeholders(len(codes))});
            """,
            (self.graph_name, DOCTOR, params["doctorId"], *codes),
        ).fetchone()
        return [{"matched": row["matched"]}]

    def _specialization(self, conn: sqlite3.Connection, params: dict[str, Any]) -> list[dict[str, Any]]:
        row = conn.execute(
            """
            SELECT COUNT(*) AS direct FROM graph_edges
            WHERE graph = ? AND source_label = ? AND source_id = ?
              AND relationship = 'SPECIALIZES_IN' AND target_id = ?;
            """,
            (self.graph_name, DOCTOR, params["doctorId"], _label(params["specialty"])),
        ).fetchone()
        return [{"direct": row["direct"]}]

    def _related_specialization(
        self, conn: sqlite3.Connection, params: dict[str, Any]
    ) -> list[dict[str, Any]]:
        row = conn.execute(
            """
            SELECT COUNT(*) AS related FROM graph_edges spec
            JOIN graph_edges rel
              ON rel.graph = spec.graph
             AND rel.relationship = 'RELATED_TO'
             AND (
                  (rel.source_id = spec.target_id AND rel.target_id = :specialty)
               OR (rel.target_id = spec.target_id AND rel.source_id = :specialty)
             )
            WHERE spec.graph = :graph AND spec.source_label = :doctor_label
              AND spec.source_id = :doctor_id AND spec.relationship = 'SPECIALIZES_IN';
            """,
            {
                "graph": self.graph_name,
                "doctor_label": DOCTOR,
                "doctor_id": params["doctorId"],
                "specialty": _label(params["specialty"]),
            },
        ).fetchone()
        return [{"related": row["related"]}]

    def _similar_cases(self, conn: sqlite3.Connection, params: dict[str, Any]) -> list[dict[str, Any]]:
        codes = _codes(params.get("icd10Codes", []))
        if not codes:
            return [{"similar": 0}]
        row = conn.execute(
            f"""
            SELECT COUNT(DISTINCT treated.target_id) AS similar FROM graph_edges treated
            JOIN graph_edges cond
              ON cond.graph = treated.graph
             AND cond.source_label = treated.target_label
             AND cond.source_id = treated.target_id
             AND cond.relationship = 'HAS_CONDITION'
            WHERE treated.graph = ? AND treated.source_label = ? AND treated.source_id = ?
              AND treated.relationship = 'TREATED'
              AND treated.target_id <> ?
              AND cond.target_id IN ({_placeholders(len(codes))});
            """,
            (
                self.graph_name,
                DOCTOR,
                params["doctorId"],
                normalize_id(params.get("caseId", "")),
                *codes,
            ),
        ).fetchone()
        return [{"similar": row["similar"]}]
