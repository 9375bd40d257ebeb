from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import DescriptionError
from .models import MedicalCase
from .pii import redact_pii
from .protocols import CaseDescriber

logger = logging.getLogger(__name__)

try:
    from openai import OpenAI
except ImportError:  # pragma: no cover
    OpenAI = None  # type: ignore[assignment]

try:
    from google import genai
    from google.genai import types as genai_types
except ImportError:  # pragma: no cover
    genai = None  # type: ignore[assignment]
    genai_types = None  # type: ignore[assignment]


SYSTEM_PROMPT = """
You write concise clinical case descriptions used for specialist matching.
Summarize the presentation, working diagnosis, coded conditions and the specialty needed.
Do not invent findings that are not in the input.
If the input does not contain enough clinical detail, return kind=insufficient_data.
""".strip()


class CaseDescriptionText(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["description"]
    text: str = Field(min_length=10, max_length=4000)


class InsufficientCaseData(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["insufficient_data"]
    reason: str = Field(min_length=1, max_length=400)


class LLMDescriptionPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    result: Annotated[
        Union[CaseDescriptionText, InsufficientCaseData],
        Field(discriminator="kind"),
    ]


def structured_description(case: MedicalCase) -> str:
    parts: list[str] = []
    if case.chief_complaint.strip():
        parts.append(f"Chief Complaint: {case.chief_complaint.strip()}")
    if case.symptoms.strip():
        parts.append(f"Symptoms: {case.symptoms.strip()}")
    if case.current_diagnosis.strip():
        parts.append(f"Diagnosis: {case.current_diagnosis.strip()}")
    codes = case.distinct_icd10_codes
    if codes:
        parts.append(f"ICD-10: {', '.join(codes)}")
    if case.required_specialty.strip():
        parts.append(f"Specialty: {case.required_specialty.strip()}")
    if not parts:
        return f"Medical case {case.id}"
    return ". ".join(parts)


def _case_payload(case: MedicalCase) -> dict[str, Any]:
    return {
        "patient_age": case.patient_age,
        "chief_complaint": redact_pii(case.chief_complaint),
        "symptoms": redact_pii(case.symptoms),
        "current_diagnosis": redact_pii(case.current_diagnosis),
        "icd10_codes": case.distinct_icd10_codes,
        "urgency_level": case.urgency_level.value if case.urgency_level else None,
        "required_specialty": case.required_specialty,
        "case_type": case.case_type.value if case.case_type else None,
        "additional_notes": redact_pii(case.additional_notes),
    }


def _payload_text(payload: LLMDescriptionPayload) -> str:
    result = payload.result
    if isinstance(result, InsufficientCaseData):
        raise DescriptionError(f"Model reported insufficient case data: {result.reason}")
    text = result.text.strip()
    if not text:
        raise DescriptionError("Model returned an empty description.")
    return text


class StructuredCaseDescriber:
    def describe(self, case: MedicalCase) -> str:
        return structured_description(case)


@dataclass
class OpenAICaseDescriber:
    model: str = "gpt-4o-mini"
    max_output_tokens: int = 400
    request_timeout_seconds: float = 20.0
    api_key: str | None = None
    client: Any | None = None

    def __post_init__(self) -> None:
        if self.client is not None:
            return
        if OpenAI is None:
            raise ImportError("openai package is not installed. Install the project dependencies.")
        self.client = OpenAI(
            api_key=self.api_key,
            timeout=self.request_timeout_seconds,
        )

    def describe(self, case: MedicalCase) -> str:
        request_input = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": json.dumps(_case_payload(case))},
        ]
        try:
            payload = self._parse_via_sdk_parser(request_input)
        except Exception as exc:
            logger.warning("OpenAI parser path failed: %s", exc)
            try:
                payload = self._parse_via_strict_json_schema(request_input)
            except Exception as strict_exc:
                raise DescriptionError(
                    f"OpenAI case description failed: {strict_exc}"
                ) from strict_exc
        return _payload_text(payload)

    def _parse_via_sdk_parser(self, request_input: list[dict[str, Any]]) -> LLMDescriptionPayload:
        response = self.client.responses.parse(
            model=self.model,
            input=request_input,
            text_format=LLMDescriptionPayload,
            max_output_tokens=self.max_output_tokens,
        )
        payload = getattr(response, "output_parsed", None)
        if payload is None:
            raise DescriptionError("responses.parse returned no output_parsed payload.")
        if isinstance(payload, LLMDescriptionPayload):
            return payload
        return LLMDescriptionPayload.model_validate(payload)

    def _parse_via_strict_json_schema(
        self, request_input: list[dict[str, Any]]
    ) -> LLMDescriptionPayload:
        response = self.client.responses.create(
            model=self.model,
            input=request_input,
            text={
                "format": {
                    "type": "json_schema",
                    "name": "case_description",
                    "schema": LLMDescriptionPayload.model_json_schema(),
                    "strict": True,
                }
            },
            max_output_tokens=self.max_output_tokens,
        )
        output_text = getattr(response, "output_text", "")
        if not output_text:
            raise DescriptionError("responses.create returned empty output_text.")
        return parse_description_json(output_text)


@dataclass
class GeminiCaseDescriber:
    model: str = "gemini-2.5-flash"
    max_output_tokens: int = 400
    api_key: str | None = None
    client: Any | None = None

    def __post_init__(self) -> None:
        if self.client is not None:
            return
        if genai is None:
            raise ImportError(
                "google-genai package is not installed. Install the project dependencies."
            )
        self.client = genai.Client(api_key=self.api_key)

    def describe(self, case: MedicalCase) -> str:
        schema = LLMDescriptionPayload.model_json_schema()
        prompt = (
            f"{SYSTEM_PROMPT}\n\n"
            "Return only valid JSON, no markdown.\n"
            "The JSON must strictly match this schema:\n"
            f"{json.dumps(schema, separators=(',', ':'))}\n\n"
            "Case input:\n"
            f"{json.dumps(_case_payload(case), separators=(',', ':'))}"
        )
        try:
            response = self.client.models.generate_content(
                model=self.model,
                contents=prompt,
                config=self._build_config(),
            )
            payload = parse_description_json(_extract_text(response))
        except DescriptionError:
            raise
        except Exception as exc:
            raise DescriptionError(f"Gemini case description failed: {exc}") from exc
        return _payload_text(payload)

    def _build_config(self) -> Any:
        if genai_types is None:
            return {
                "response_mime_type": "application/json",
                "max_output_tokens": self.max_output_tokens,
            }
        return genai_types.GenerateContentConfig(
            response_mime_type="application/json",
            max_output_tokens=self.max_output_tokens,
        )


def _extract_text(response: Any) -> str:
    direct = getattr(response, "text", None)
    if isinstance(direct, str) and direct.strip():
        return direct
    chunks: list[str] = []
    for candidate in getattr(response, "candidates", None) or []:
        content = getattr(candidate, "content", None)
        for part in getattr(content, "parts", None) or []:
            part_text = getattr(part, "text", None)
            if isinstance(part_text, str) and part_text.strip():
                chunks.append(part_text)
    return "\n".join(chunks)


def parse_description_json(raw_output: str) -> LLMDescriptionPayload:
    cleaned = raw_output.strip()
    fence_match = re.match(r"^```[a-zA-Z0-9_-]*\s*(.*)\s*```$", cleaned, re.DOTALL)
    if fence_match:
        cleaned = fence_match.group(1).strip()
    if not cleaned:
        raise DescriptionError("Model returned no text output.")
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        start = cleaned.find("{")
        end = cleaned.rfind("}")
        if start == -1 or end <= start:
            raise DescriptionError("Model output was not valid JSON.")
        try:
            data = json.loads(cleaned[start : end + 1])
        except json.JSONDecodeError as exc:
            raise DescriptionError("Model output was not valid JSON.") from exc
    try:
        return LLMDescriptionPayload.model_validate(data)
    except ValidationError as exc:
        raise DescriptionError(f"Schema validation failed: {exc}") from exc


@dataclass
class FallbackCaseDescriber:
    primary: CaseDescriber
    fallback: CaseDescriber

    def describe(self, case: MedicalCase) -> str:
        try:
            text = self.primary.describe(case)
            if text and text.strip():
                return text.strip()
            logger.warning("Primary describer returned empty text for case %s", case.id)
        except Exception as exc:
            logger.exception("Primary describer failed; switching to fallback. Error: %s", exc)
        return self.fallback.describe(case)
