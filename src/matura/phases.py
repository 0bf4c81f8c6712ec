"""
Phase State Machine: legal ordering and per-phase request assembly.

FreeTalk -> InsightRefine -> SketchView -> UXBuild -> CodePlayground -> ReleaseBoard

A phase can be entered only when the phase before it has an artifact.
build_request is pure: the same inputs always give the same request apart
from the fresh request_id.
"""

import json
import uuid
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from matura.artifacts import ArtifactModel, GeneratedCode, Insight, ProjectSchema, UIStyleChoice, UXDesign
from matura.config import LLMConfig, TimeoutConfig
from matura.prompts import (
    CONTEXT_CODE_PLAYGROUND,
    CONTEXT_INSIGHT_REFINE,
    CONTEXT_RELEASE_BOARD,
    CONTEXT_SKETCH_VIEW,
    CONTEXT_UX_BUILD,
    PROMPT_CODE_PLAYGROUND,
    PROMPT_FREE_TALK,
    PROMPT_INSIGHT_REFINE,
    PROMPT_RELEASE_BOARD,
    PROMPT_SKETCH_VIEW,
    PROMPT_UX_BUILD,
)
from matura.state import GenerationRequest, Message, Phase, Role


@dataclass(frozen=True)
class PhaseSpec:
    """Static description of one phase's request."""
    phase: Phase
    directive: str
    structured: bool
    requires: tuple[Phase, ...] = ()


PHASE_SPECS: dict[Phase, PhaseSpec] = {
    Phase.FREE_TALK: PhaseSpec(Phase.FREE_TALK, PROMPT_FREE_TALK, structured=False),
    Phase.INSIGHT_REFINE: PhaseSpec(
        Phase.INSIGHT_REFINE, PROMPT_INSIGHT_REFINE, structured=True,
    ),
    Phase.SKETCH_VIEW: PhaseSpec(
        Phase.SKETCH_VIEW, PROMPT_SKETCH_VIEW, structured=True,
        requires=(Phase.INSIGHT_REFINE,),
    ),
    Phase.UX_BUILD: PhaseSpec(
        Phase.UX_BUILD, PROMPT_UX_BUILD, structured=True,
        requires=(Phase.INSIGHT_REFINE, Phase.SKETCH_VIEW),
    ),
    Phase.CODE_PLAYGROUND: PhaseSpec(
        Phase.CODE_PLAYGROUND, PROMPT_CODE_PLAYGROUND, structured=False,
        requires=(Phase.INSIGHT_REFINE, Phase.SKETCH_VIEW, Phase.UX_BUILD),
    ),
    Phase.RELEASE_BOARD: PhaseSpec(
        Phase.RELEASE_BOARD, PROMPT_RELEASE_BOARD, structured=True,
        requires=(Phase.INSIGHT_REFINE, Phase.CODE_PLAYGROUND),
    ),
}


class PhaseMachine:
    """
    Ordering rules and request builder for the six phases.

    Usage:
        machine = PhaseMachine(config.timeouts, config.llm)
        if machine.can_advance(Phase.SKETCH_VIEW, state.artifacts):
            request = machine.build_request(Phase.SKETCH_VIEW, state.conversation, state.artifacts)
    """

    def __init__(self, timeouts: TimeoutConfig | None = None, llm: LLMConfig | None = None):
        self.timeouts = timeouts or TimeoutConfig()
        self.llm = llm

    def can_advance(self, phase: Phase, artifacts: Mapping[Phase, Any]) -> bool:
        """True for FreeTalk, otherwise only when the previous phase has an artifact."""
        previous = phase.previous()
        if previous is None:
            return True
        return artifacts.get(previous) is not None

    def build_request(
        self,
        phase: Phase,
        conversation: Sequence[Message],
        artifacts: Mapping[Phase, ArtifactModel],
        schema: ProjectSchema | None = None,
        preview_url: str | None = None,
    ) -> GenerationRequest:
        """
        Assemble the request for a phase.

        Args:
            phase: Phase to generate.
            conversation: Full conversation log.
            artifacts: Committed artifacts of earlier phases.
            schema: Target table for CodePlayground (generic when None).
            preview_url: Saved app location for ReleaseBoard.

        Returns:
            A fresh GenerationRequest.

        Raises:
            ValueError: If an artifact the phase consumes is missing.
        """
        spec = PHASE_SPECS[phase]
        missing = [required.label for required in spec.requires if artifacts.get(required) is None]
        if missing:
            raise ValueError(f"{phase.label} needs artifacts from: {', '.join(missing)}")

        if phase is Phase.FREE_TALK:
            history = tuple(message for message in conversation if message.role is not Role.SYSTEM)
        else:
            context = self._context(phase, conversation, artifacts, schema, preview_url)
            history = (Message.create(Role.USER, context, phase),)

        return GenerationRequest(
            request_id=uuid.uuid4().hex,
            phase=phase,
            directive=spec.directive,
            history=history,
            structured=spec.structured,
            timeout_ms=self.timeouts.for_phase(phase, spec.structured),
            max_tokens=self.llm.max_tokens_for(phase) if self.llm else None,
        )

    def _context(
        self,
        phase: Phase,
        conversation: Sequence[Message],
        artifacts: Mapping[Phase, ArtifactModel],
        schema: ProjectSchema | None,
        preview_url: str | None,
    ) -> str:
        if phase is Phase.INSIGHT_REFINE:
            return CONTEXT_INSIGHT_REFINE.format(transcript=_transcript(conversation))

        insight: Insight = artifacts[Phase.INSIGHT_REFINE]
        if phase is Phase.SKETCH_VIEW:
            return CONTEXT_SKETCH_VIEW.format(insight=_to_json(insight))

        ui_style: UIStyleChoice = artifacts.get(Phase.SKETCH_VIEW)
        if phase is Phase.UX_BUILD:
            return CONTEXT_UX_BUILD.format(insight=_to_json(insight), ui_style=_to_json(ui_style))

        if phase is Phase.CODE_PLAYGROUND:
            ux_design: UXDesign = artifacts[Phase.UX_BUILD]
            schema = schema or ProjectSchema.generic()
            columns = "\n".join(
                f"- {column.name} ({column.type}): {column.description}"
                for column in schema.all_columns()
            )
            return CONTEXT_CODE_PLAYGROUND.format(
                insight=_to_json(insight),
                ui_style=_to_json(ui_style),
                ux_design=_to_json(ux_design),
                table_name=schema.table_name,
                columns=columns,
            )

        code: GeneratedCode = artifacts[Phase.CODE_PLAYGROUND]
        code_summary = json.dumps(code.metadata, ensure_ascii=False, sort_keys=True)
        return CONTEXT_RELEASE_BOARD.format(
            insight=_to_json(insight),
            code_summary=code_summary,
            preview_url=preview_url or "未公開",
        )


def _to_json(artifact: ArtifactModel) -> str:
    return json.dumps(artifact.model_dump(mode="json", by_alias=True), ensure_ascii=False, indent=2)


def _transcript(conversation: Sequence[Message]) -> str:
    speakers = {Role.USER: "ユーザー", Role.ASSISTANT: "MATURA", Role.SYSTEM: "システム"}
    return "\n".join(f"{speakers[message.role]}: {message.content}" for message in conversation)
