from __future__ import annotations

import re


EMAIL_RE = re.compile(r"\b[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}\b", flags=re.IGNORECASE)
PHONE_RE = re.compile(r"\b(?:\+?1[-.\s]?)?(?:\(?\d{3}\)?[-.\s]?)\d{3}[-.\s]?\d{4}\b")
MRN_RE = re.compile(r"\bMRN[:#\s]*[A-Z0-9-]{4,}\b", flags=re.IGNORECASE)
SSN_RE = re.compile(r"\b\d{3}-\d{2}-\d{4}\b")
LONG_NUMBER_RE = re.compile(r"\b\d{8,}\b")


def redact_pii(text: str) -> str:
    """Strip direct identifiers before case text leaves the process."""
    if not text:
        return text
    redacted = EMAIL_RE.sub("[REDACTED_EMAIL]", text)
    redacted = MRN_RE.sub("[REDACTED_MRN]", redacted)
    redacted = SSN_RE.sub("[REDACTED_SSN]", redacted)
    redacted = PHONE_RE.sub("[REDACTED_PHONE]", redacted)
    redacted = LONG_NUMBER_RE.sub("[REDACTED_ID]", redacted)
    return redacted
