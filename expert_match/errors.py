from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    GRAPH_QUERY_FAILED = "GRAPH_QUERY_FAILED"
    GRAPH_NOT_EXISTS = "GRAPH_NOT_EXISTS"
    EMBEDDING_GENERATION_FAILED = "EMBEDDING_GENERATION_FAILED"
    DESCRIPTION_FAILED = "DESCRIPTION_FAILED"
    DATA_NOT_FOUND = "DATA_NOT_FOUND"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    ADMISSION_INTERRUPTED = "ADMISSION_INTERRUPTED"
    RETRY_INTERRUPTED = "RETRY_INTERRUPTED"
    REQUEST_CANCELLED = "REQUEST_CANCELLED"
    JOB_STATE_INVALID = "JOB_STATE_INVALID"


class ExpertMatchError(RuntimeError):
    code: ErrorCode = ErrorCode.VALIDATION_FAILED

    def __init__(self, message: str, *, code: ErrorCode | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code


class BackendUnavailableError(ExpertMatchError):
    """A backend call failed; optional signals degrade instead of failing the request."""


class GraphQueryError(BackendUnavailableError):
    code = ErrorCode.GRAPH_QUERY_FAILED


class EmbeddingError(BackendUnavailableError):
    code = ErrorCode.EMBEDDING_GENERATION_FAILED


class DescriptionError(BackendUnavailableError):
    code = ErrorCode.DESCRIPTION_FAILED


class InvalidRequestError(ExpertMatchError):
    code = ErrorCode.VALIDATION_FAILED


class CaseNotFoundError(InvalidRequestError):
    code = ErrorCode.DATA_NOT_FOUND

    def __init__(self, case_id: str) -> None:
        super().__init__(f"Medical case not found: {case_id}")
        self.case_id = case_id


class AdmissionInterruptedError(ExpertMatchError):
    code = ErrorCode.ADMISSION_INTERRUPTED


class RetryInterruptedError(ExpertMatchError):
    code = ErrorCode.RETRY_INTERRUPTED


class RequestCancelledError(ExpertMatchError):
    code = ErrorCode.REQUEST_CANCELLED


class JobStateError(ExpertMatchError):
    code = ErrorCode.JOB_STATE_INVALID
