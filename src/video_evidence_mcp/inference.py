"""Inference collaborator — turns a prompt plus a stored video into raw findings."""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

from google.genai import types
from pydantic import BaseModel

from .client import GeminiClient
from .config import get_config
from .errors import InferenceFailure
from .prompts.evidence import FORENSIC_PROMPT, SYSTEM_INSTRUCTION, TIMESTAMP_SCHEMA

logger = logging.getLogger(__name__)


class InferenceRequest(BaseModel):
    evidence_reference: str
    prompt: str
    model_id: str | None = None


class EvidenceInference(Protocol):
    """Returns the untrusted raw response; normalization happens downstream."""

    async def analyze(self, request: InferenceRequest) -> Any: ...


def resolve_model(model_id: str | None) -> str:
    """Return *model_id* or the default, rejecting models outside the allow-list."""
    cfg = get_config()
    if not model_id:
        return cfg.default_model
    if model_id not in cfg.allowed_models:
        allowed = ", ".join(cfg.allowed_models)
        raise ValueError(f"Model '{model_id}' is not supported. Allowed: {allowed}")
    return model_id


class GeminiInference:
    """Forensic timestamp extraction with Gemini structured output."""

    async def analyze(self, request: InferenceRequest) -> Any:
        model = resolve_model(request.model_id)
        contents = types.Content(
            role="user",
            parts=[
                types.Part(file_data=types.FileData(file_uri=request.evidence_reference)),
                types.Part(text=FORENSIC_PROMPT.format(task=request.prompt)),
            ],
        )
        try:
            raw = await GeminiClient.generate(
                contents,
                model=model,
                response_schema=TIMESTAMP_SCHEMA,
                system_instruction=SYSTEM_INSTRUCTION,
            )
        except Exception as exc:
            logger.warning("Gemini analysis failed for %s: %s", request.evidence_reference, exc)
            raise InferenceFailure(f"Analysis request failed: {exc}") from exc

        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise InferenceFailure(f"Model returned non-JSON output: {raw[:200]!r}") from exc
