"""
SessionState: Single source of truth for one user's journey through the phases.

Design:
- SessionState is frozen (immutable) to prevent accidental mutation
- All updates create new instances via apply_update()
- The Orchestrator is the only owner; it swaps in a new instance only when
  a request resolves and is still the live one
"""

import json
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, TypedDict


class Phase(IntEnum):
    """The six ordered stages of the generation pipeline."""
    FREE_TALK = 0
    INSIGHT_REFINE = 1
    SKETCH_VIEW = 2
    UX_BUILD = 3
    CODE_PLAYGROUND = 4
    RELEASE_BOARD = 5

    @property
    def label(self) -> str:
        return _PHASE_LABELS[self]

    def next(self) -> "Phase | None":
        """The phase after this one, or None at ReleaseBoard."""
        if self is Phase.RELEASE_BOARD:
            return None
        return Phase(self + 1)

    def previous(self) -> "Phase | None":
        if self is Phase.FREE_TALK:
            return None
        return Phase(self - 1)

    @classmethod
    def from_label(cls, label: str) -> "Phase":
        for phase, name in _PHASE_LABELS.items():
            if name == label:
                return phase
        raise ValueError(f"Unknown phase: {label}")


_PHASE_LABELS = {
    Phase.FREE_TALK: "FreeTalk",
    Phase.INSIGHT_REFINE: "InsightRefine",
    Phase.SKETCH_VIEW: "SketchView",
    Phase.UX_BUILD: "UXBuild",
    Phase.CODE_PLAYGROUND: "CodePlayground",
    Phase.RELEASE_BOARD: "ReleaseBoard",
}


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass(frozen=True)
class Message:
    """One entry of the conversation log. Never mutated after creation."""
    id: str
    role: Role
    content: str
    timestamp: str
    phase: Phase

    @classmethod
    def create(cls, role: Role, content: str, phase: Phase) -> "Message":
        return cls(
            id=uuid.uuid4().hex,
            role=role,
            content=content,
            timestamp=datetime.now().isoformat(),
            phase=phase,
        )

    def to_payload(self) -> dict[str, str]:
        """The {role, content} pair sent to the completion client."""
        return {"role": self.role.value, "content": self.content}


@dataclass(frozen=True)
class GenerationRequest:
    """
    Description of one outbound completion call.

    Built fresh by PhaseMachine.build_request for every attempt; a retry
    gets a new request_id.
    """
    request_id: str
    phase: Phase
    directive: str
    history: tuple[Message, ...]
    structured: bool
    timeout_ms: int
    max_tokens: int | None = None

    def history_payload(self) -> list[dict[str, str]]:
        return [message.to_payload() for message in self.history]

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000


class SessionUpdate(TypedDict, total=False):
    """
    Partial state update committed by the Orchestrator.

    Only fields that changed are present.
    """
    current_phase: Phase
    conversation: tuple[Message, ...]
    quality: Any
    pattern_match: Any
    target_schema: Any
    saved_app: Any


@dataclass(frozen=True)
class SessionState:
    """
    Immutable state for a single orchestrated session.

    Design principles:
    - Conversation is append-only
    - current_phase never decreases
    - Each phase holds at most one artifact, replaced only by regeneration
    """

    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    # === Phase Progress ===
    current_phase: Phase = Phase.FREE_TALK

    # === Conversation Log ===
    conversation: tuple[Message, ...] = field(default_factory=tuple)

    # === Derived Results ===
    quality: Any = None          # QualityReport for the committed Insight
    pattern_match: Any = None    # PatternMatch computed for CodePlayground
    target_schema: Any = None    # ProjectSchema handed to code generation
    saved_app: Any = None        # SaveReceipt from the persistence hand-off

    # === Artifacts per Phase ===
    # Note: tuple is used for immutability; convert to dict when accessing
    _artifacts: tuple[tuple[Phase, Any], ...] = field(default_factory=tuple)
    _fallbacks: frozenset[Phase] = field(default_factory=frozenset)

    def artifact(self, phase: Phase, default: Any = None) -> Any:
        """Get the committed artifact for a phase."""
        return dict(self._artifacts).get(phase, default)

    def has_artifact(self, phase: Phase) -> bool:
        return phase in dict(self._artifacts)

    def is_fallback(self, phase: Phase) -> bool:
        """True when the phase's artifact is the deterministic fallback."""
        return phase in self._fallbacks

    @property
    def artifacts(self) -> dict[Phase, Any]:
        return dict(self._artifacts)

    def with_artifact(self, phase: Phase, artifact: Any, fallback: bool = False) -> "SessionState":
        """
        Attach an artifact to a phase, returning new SessionState.

        Args:
            phase: Phase that produced the artifact.
            artifact: Parsed artifact (real or fallback).
            fallback: Whether the parser fell back.

        Returns:
            New SessionState with the artifact attached.
        """
        artifacts = dict(self._artifacts)
        artifacts[phase] = artifact
        fallbacks = self._fallbacks | {phase} if fallback else self._fallbacks - {phase}
        return replace(
            self,
            _artifacts=tuple(sorted(artifacts.items())),
            _fallbacks=frozenset(fallbacks),
        )

    def with_message(self, message: Message) -> "SessionState":
        return replace(self, conversation=self.conversation + (message,))

    def apply_update(self, update: SessionUpdate) -> "SessionState":
        """
        Apply a partial update to the state.

        Creates a new SessionState instance with updated values.

        Args:
            update: Dictionary of field names to new values.

        Returns:
            New SessionState with updates applied.

        Raises:
            ValueError: If the update would move the phase backwards,
                or rewrite existing conversation entries.
        """
        unknown = [key for key in update if key.startswith("_") or not hasattr(self, key)]
        if unknown:
            raise ValueError(f"Unknown state fields: {', '.join(sorted(unknown))}")

        new_phase = update.get("current_phase", self.current_phase)
        if new_phase < self.current_phase:
            raise ValueError(
                f"Phase cannot move backwards: {self.current_phase.label} -> {new_phase.label}"
            )

        conversation = update.get("conversation", self.conversation)
        if conversation[:len(self.conversation)] != self.conversation:
            raise ValueError("Conversation is append-only")

        return replace(self, **update)

    @property
    def source_idea(self) -> str:
        """The first thing the user said: the idea being built."""
        for message in self.conversation:
            if message.role is Role.USER:
                return message.content
        return ""

    def snapshot(self) -> str:
        """Stable JSON rendering, used to compare states byte-for-byte."""
        data = {
            "session_id": self.session_id,
            "current_phase": self.current_phase.label,
            "conversation": [
                [m.id, m.role.value, m.content, m.timestamp, m.phase.label]
                for m in self.conversation
            ],
            "artifacts": {
                phase.label: _dump(artifact) for phase, artifact in self._artifacts
            },
            "fallbacks": sorted(phase.label for phase in self._fallbacks),
            "quality": _dump(self.quality),
            "pattern_match": _dump(self.pattern_match),
            "target_schema": _dump(self.target_schema),
            "saved_app": _dump(self.saved_app),
        }
        return json.dumps(data, ensure_ascii=False, sort_keys=True, default=str)


def _dump(value: Any) -> Any:
    if value is None:
        return None
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return value
