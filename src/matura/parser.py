"""
Structured Response Parser: raw completion text -> typed artifact.

parse() is total. Whatever the completion returned (empty string, prose,
truncated JSON, JSON of the wrong shape), the caller gets a fully populated
artifact for the phase: either the validated parse, or the phase's complete
deterministic fallback. There is no partially populated artifact.

The structure quality check is separate and informational: it scores the
fields of a parsed artifact so later phases can tell a rich Insight from a
thin or fallback one.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Mapping

from pydantic import BaseModel

from matura.artifacts import ArtifactModel, ARTIFACT_TYPES, GeneratedCode, TalkReply
from matura.logging_utils import get_logger
from matura.state import Phase
from matura.text import word_set

logger = get_logger(__name__)


# =============================================================================
# JSON extraction
# =============================================================================

def _strip_code_fences(text: str) -> str:
    fenced = re.findall(r"```(?:json)?\s*(.*?)```", text, flags=re.DOTALL | re.IGNORECASE)
    if fenced:
        return "\n".join(fenced)
    return text


def _iter_json_candidates(text: str) -> list[str]:
    candidates: list[str] = []
    stripped = _strip_code_fences(text)
    candidates.append(stripped)

    for match in re.finditer(r"[\[{]", stripped):
        candidates.append(stripped[match.start():])

    return candidates


def _try_parse(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return None


def extract_json(raw_text: str) -> Any:
    """
    Find the JSON value in a completion.

    Accepts bare JSON, JSON inside ```json fences, and JSON preceded or
    followed by prose.

    Raises:
        ValueError: If no JSON value can be decoded.
    """
    parsed = _try_parse(raw_text)
    if parsed is not None:
        return parsed

    for candidate in _iter_json_candidates(raw_text):
        parsed = _try_parse(candidate)
        if parsed is not None:
            return parsed

    decoder = json.JSONDecoder()
    for candidate in _iter_json_candidates(raw_text):
        try:
            parsed, _ = decoder.raw_decode(candidate.lstrip())
            return parsed
        except json.JSONDecodeError:
            continue

    snippet = raw_text.strip().replace("\n", " ")
    snippet = (snippet[:200] + "...") if len(snippet) > 200 else snippet
    raise ValueError(f"No JSON object found in response. Snippet: {snippet}")


def clean_code_response(response: str) -> str:
    """
    Remove markdown formatting from a code generation response.

    Handles:
    - A response wrapped entirely in ```html (or any language) fences
    - A fenced block surrounded by explanation text
    - Trailing explanations after the closing </html>
    """
    content = response.strip()

    if content.startswith("```"):
        lines = content.split('\n')
        # Remove first line (```html or ```)
        lines = lines[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        content = '\n'.join(lines)
    else:
        block = re.search(r"```[\w-]*\n(.*?)```", content, flags=re.DOTALL)
        if block:
            content = block.group(1)

    end = content.lower().rfind("</html>")
    if end != -1:
        content = content[:end + len("</html>")]

    return content.strip()


# =============================================================================
# Parser
# =============================================================================

@dataclass(frozen=True)
class ParseOutcome:
    """What parse() produced and whether it had to fall back."""
    phase: Phase
    artifact: ArtifactModel
    used_fallback: bool
    error: str | None = None


class StructuredResponseParser:
    """
    Converts raw completion text into the artifact for a phase.

    Usage:
        parser = StructuredResponseParser()
        insight = parser.parse(Phase.INSIGHT_REFINE, raw_text)

        outcome = parser.parse_outcome(Phase.UX_BUILD, raw_text)
        if outcome.used_fallback:
            ...
    """

    def parse(self, phase: Phase, raw_text: str) -> ArtifactModel:
        """Return the artifact for `phase`. Never raises."""
        return self.parse_outcome(phase, raw_text).artifact

    def parse_outcome(
        self,
        phase: Phase,
        raw_text: str,
        code_metadata: Mapping[str, Any] | None = None,
    ) -> ParseOutcome:
        text = raw_text if isinstance(raw_text, str) else ""

        if phase is Phase.FREE_TALK:
            return self._parse_reply(text)
        if phase is Phase.CODE_PLAYGROUND:
            return self._parse_code(text, code_metadata or {})

        model = ARTIFACT_TYPES[phase]
        try:
            data = extract_json(text)
            artifact = model.model_validate(data)
        except (ValueError, RecursionError) as e:
            # pydantic.ValidationError is a ValueError
            logger.warning(f"{phase.label}: unusable response, using fallback ({e.__class__.__name__})")
            return ParseOutcome(phase, model.fallback(), used_fallback=True, error=str(e))

        return ParseOutcome(phase, artifact, used_fallback=False)

    def _parse_reply(self, text: str) -> ParseOutcome:
        reply = text.strip()
        if not reply:
            logger.warning("FreeTalk: empty reply, using fallback")
            return ParseOutcome(Phase.FREE_TALK, TalkReply.fallback(), used_fallback=True, error="empty reply")
        return ParseOutcome(Phase.FREE_TALK, TalkReply(reply=reply), used_fallback=False)

    def _parse_code(self, text: str, metadata: Mapping[str, Any]) -> ParseOutcome:
        code = clean_code_response(text)
        if not code:
            logger.warning("CodePlayground: no code in response, using fallback")
            return ParseOutcome(
                Phase.CODE_PLAYGROUND, GeneratedCode.fallback(), used_fallback=True, error="empty code"
            )

        language = "html" if re.search(r"<html|<!doctype", code, re.IGNORECASE) else "text"
        artifact = GeneratedCode(
            code=code,
            metadata={
                **metadata,
                "language": language,
                "line_count": code.count("\n") + 1,
            },
        )
        return ParseOutcome(Phase.CODE_PLAYGROUND, artifact, used_fallback=False)


# =============================================================================
# Structure quality check
# =============================================================================

REASONING_MARKERS = ("ため", "ので", "から")
_DIGIT_RE = re.compile(r"\d")


@dataclass(frozen=True)
class QualityReport:
    """Three 0-100 scores and their aggregate."""
    completeness: int
    consistency: int
    clarity: int
    quality_score: int
    ready_for_generation: bool
    issues: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "completeness": self.completeness,
            "consistency": self.consistency,
            "clarity": self.clarity,
            "quality_score": self.quality_score,
            "ready_for_generation": self.ready_for_generation,
            "issues": list(self.issues),
        }


def _field_text(value: Any) -> str:
    if isinstance(value, list):
        return "、".join(str(item) for item in value)
    return str(value)


def _clamp(score: float) -> int:
    return int(max(0, min(100, round(score))))


def check_structure_quality(
    data: Mapping[str, Any] | BaseModel,
    ready_threshold: int = 60,
) -> QualityReport:
    """
    Score structured fields for completeness, consistency and clarity.

    - completeness: share of fields longer than 20 characters
    - consistency: 100, minus 15 for duplicated list items, 10 per empty
      list, 10 when vision and value share no words
    - clarity: 100, minus 10 without a reasoning connective (ため/ので/から),
      10 without any number, 10 per string field under 5 characters

    Args:
        data: Parsed artifact or its field mapping.
        ready_threshold: Aggregate score needed for ready_for_generation.

    Returns:
        QualityReport. All-zero and not ready when there are no fields.
    """
    if isinstance(data, BaseModel):
        data = data.model_dump()

    fields = {
        key: value for key, value in data.items()
        if isinstance(value, (str, list))
    }
    if not fields:
        return QualityReport(0, 0, 0, 0, False, ("構造化されたフィールドがありません",))

    issues: list[str] = []

    long_fields = sum(1 for value in fields.values() if len(_field_text(value)) > 20)
    completeness = _clamp(100 * long_fields / len(fields))
    if long_fields < len(fields):
        issues.append(f"{len(fields) - long_fields}個の項目が短すぎます")

    consistency = 100
    lists = [value for value in fields.values() if isinstance(value, list)]
    for items in lists:
        normalized = [str(item).strip().lower() for item in items]
        if len(set(normalized)) < len(normalized):
            consistency -= 15
            issues.append("重複した項目があります")
            break
    for items in lists:
        if not items:
            consistency -= 10
            issues.append("空のリストがあります")
    vision, value = fields.get("vision"), fields.get("value")
    if isinstance(vision, str) and isinstance(value, str):
        if not word_set(vision) & word_set(value):
            consistency -= 10
            issues.append("ビジョンと提供価値の関連が不明確です")

    clarity = 100
    combined = " ".join(_field_text(value) for value in fields.values())
    if not any(marker in combined for marker in REASONING_MARKERS):
        clarity -= 10
        issues.append("理由の説明がありません")
    if not _DIGIT_RE.search(combined):
        clarity -= 10
        issues.append("具体的な数値がありません")
    for key, value in fields.items():
        if isinstance(value, str) and len(value.strip()) < 5:
            clarity -= 10
            issues.append(f"{key}が短すぎます")

    consistency = _clamp(consistency)
    clarity = _clamp(clarity)
    quality_score = _clamp((completeness + consistency + clarity) / 3)

    return QualityReport(
        completeness=completeness,
        consistency=consistency,
        clarity=clarity,
        quality_score=quality_score,
        ready_for_generation=quality_score >= ready_threshold,
        issues=tuple(issues),
    )
