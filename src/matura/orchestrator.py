"""
Orchestrator: drives one session from free talk to a released app.

The orchestrator owns the conversation, the current phase and the artifacts.
Each step goes:
    PhaseMachine.can_advance -> build_request -> RequestController.execute
    -> StructuredResponseParser -> commit

Usage:
    from matura.orchestrator import Orchestrator, run_session

    async with Orchestrator(LLMClient(config.llm), config) as orchestrator:
        await orchestrator.talk("病院の診療予約システムを作りたい")
        result = await orchestrator.advance()      # InsightRefine
        if result.user_visible:
            print(result.user_message)
            result = await orchestrator.regenerate()

    # Or the whole journey at once
    outcome = await run_session(client, config, "家計簿アプリを作りたい")
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Sequence

from matura.app_store import AppRecord, AppRepository, FileAppStore, SaveReceipt, generate_app_name
from matura.artifacts import GeneratedCode, Insight, ProjectSchema
from matura.config import AppConfig
from matura.controller import RequestController
from matura.errors import AlreadyInFlightError, GenerationError, RequestCancelledError
from matura.llm import CompletionClient
from matura.logging_utils import StepLoggerAdapter, get_logger, step_logger
from matura.parser import QualityReport, StructuredResponseParser, check_structure_quality
from matura.patterns import PatternCatalog, PatternMatch, PatternMatcher, build_target_schema
from matura.phases import PhaseMachine
from matura.state import Message, Phase, Role, SessionState

logger = get_logger(__name__)


class StepStatus(Enum):
    """Outcome of one orchestrator call."""
    COMPLETED = auto()
    SKIPPED = auto()
    FAILED = auto()
    CANCELLED = auto()


@dataclass
class StepResult:
    """Result from a single talk/advance/regenerate call."""
    phase: Phase
    status: StepStatus
    artifact: Any = None
    error: GenerationError | None = None
    used_fallback: bool = False
    quality: QualityReport | None = None
    save_receipt: SaveReceipt | None = None
    reason: str | None = None
    duration_s: float = 0.0

    @property
    def user_visible(self) -> bool:
        """Whether the failure should be shown to the user."""
        return self.error is not None and self.error.user_visible

    @property
    def user_message(self) -> str:
        return self.error.user_message if self.user_visible else ""


@dataclass
class SessionResult:
    """Result of run_session."""
    success: bool
    state: SessionState
    steps: list[StepResult] = field(default_factory=list)

    @property
    def failed_step(self) -> StepResult | None:
        for step in self.steps:
            if step.status in (StepStatus.FAILED, StepStatus.SKIPPED):
                return step
        return None


class Orchestrator:
    """
    Public entry point of the core: talk, advance, regenerate, cancel.

    State is only replaced when a request resolves and is still the live
    one. A failed, cancelled or superseded request leaves the session
    exactly as it was.
    """

    def __init__(
        self,
        client: CompletionClient,
        config: AppConfig | None = None,
        catalog: PatternCatalog | None = None,
        repository: AppRepository | None = None,
    ):
        """
        Initialize the orchestrator.

        Nothing is read from or written to disk here.

        Args:
            client: Completion client. close() closes it.
            config: Application configuration. AppConfig.from_env() if None;
                use load_config() to read the JSON config file.
            catalog: Domain pattern catalog. Built-in catalog if None.
            repository: Where finished apps are saved. A FileAppStore under
                config.paths.apps_dir if None and persistence is enabled.
        """
        self.config = config or AppConfig.from_env()
        self.client = client
        self.controller = RequestController(client)
        self.machine = PhaseMachine(self.config.timeouts, self.config.llm)
        self.parser = StructuredResponseParser()
        self.matcher = PatternMatcher(
            catalog or PatternCatalog.default(),
            threshold=self.config.match_threshold,
        )
        if repository is None and self.config.persist_apps:
            repository = FileAppStore(self.config.paths.apps_dir)
        self.repository = repository

        self._state = SessionState()
        self._live_request_id: str | None = None
        # Set from the start of a step until its save hand-off returns
        self._step_running = False
        # (phase, pending user message) of the last failed attempt
        self._last_failed: tuple[Phase, Message | None] | None = None

    async def __aenter__(self) -> "Orchestrator":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # =========================================================================
    # Read access
    # =========================================================================

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def current_phase(self) -> Phase:
        return self._state.current_phase

    @property
    def busy(self) -> bool:
        return self._step_running or self.controller.in_flight

    def can_advance(self) -> bool:
        target = self._state.current_phase.next()
        return target is not None and self.machine.can_advance(target, self._state.artifacts)

    # =========================================================================
    # Entry points
    # =========================================================================

    async def talk(self, text: str) -> StepResult:
        """
        Send a user message during FreeTalk and get MATURA's reply.

        The user message and the reply are committed together; if the
        request fails the conversation is unchanged and regenerate()
        resends the same message.
        """
        phase = self._state.current_phase
        if phase is not Phase.FREE_TALK:
            return self._skipped(phase, f"talk is only available in FreeTalk (now {phase.label})")
        if not text or not text.strip():
            return self._skipped(phase, "empty message")

        message = Message.create(Role.USER, text.strip(), Phase.FREE_TALK)
        return await self._run(Phase.FREE_TALK, message)

    async def advance(self) -> StepResult:
        """Generate the next phase's artifact and move to it."""
        current = self._state.current_phase
        target = current.next()
        if target is None:
            return self._skipped(current, "already at the last phase")
        if not self.machine.can_advance(target, self._state.artifacts):
            step_logger(logger, target).debug(f"cannot enter: {current.label} has no artifact")
            return self._skipped(target, f"{current.label} has no artifact yet")

        return await self._run(target)

    async def regenerate(self) -> StepResult:
        """
        Retry the last failed step, or re-issue the current phase.

        Never moves past the phase being regenerated.
        """
        if self._last_failed is not None:
            phase, pending = self._last_failed
            if not self.machine.can_advance(phase, self._state.artifacts):
                return self._skipped(phase, "preconditions no longer hold")
            return await self._run(phase, pending)

        phase = self._state.current_phase
        if phase is Phase.FREE_TALK and not self._state.conversation:
            return self._skipped(phase, "nothing to regenerate")
        if not self.machine.can_advance(phase, self._state.artifacts):
            return self._skipped(phase, "preconditions not met")

        return await self._run(phase)

    def cancel(self) -> bool:
        """
        Cancel the in-flight request, if any. Idempotent.

        The cancelled step resolves to CANCELLED and nothing is committed.

        Returns:
            True if a live request was cancelled, or its already-arrived
            result will now be discarded.
        """
        had_live_request = self._live_request_id is not None
        self._live_request_id = None
        cancelled = self.controller.cancel()
        return cancelled or had_live_request

    async def close(self) -> None:
        """Cancel outstanding work and close the client."""
        self.cancel()
        close = getattr(self.client, "close", None)
        if close is not None:
            await close()

    # =========================================================================
    # Step execution
    # =========================================================================

    async def _run(self, phase: Phase, pending: Message | None = None) -> StepResult:
        if self.busy:
            error = AlreadyInFlightError(
                f"step {self.controller.current_request_id or 'in progress'} has not finished"
            )
            step_logger(logger, phase).info("rejected, another step is still running")
            return StepResult(phase=phase, status=StepStatus.FAILED, error=error)

        self._step_running = True
        try:
            return await self._run_step(phase, pending)
        finally:
            self._step_running = False

    async def _run_step(self, phase: Phase, pending: Message | None) -> StepResult:
        started = time.monotonic()
        state = self._state
        conversation = state.conversation + ((pending,) if pending else ())

        match: PatternMatch | None = None
        schema: ProjectSchema | None = None
        if phase is Phase.CODE_PLAYGROUND:
            match = self.matcher.match(state.source_idea, hint=self._insight_hint(state))
            schema = build_target_schema(match)

        preview_url = state.saved_app.preview_url if state.saved_app else None
        request = self.machine.build_request(
            phase, conversation, state.artifacts, schema=schema, preview_url=preview_url
        )
        log = step_logger(logger, phase, request.request_id)
        self._live_request_id = request.request_id
        log.info("generating")

        try:
            text = await self.controller.execute(request)
        except GenerationError as e:
            if self._live_request_id == request.request_id:
                self._live_request_id = None
            status = StepStatus.CANCELLED if isinstance(e, RequestCancelledError) else StepStatus.FAILED
            if status is StepStatus.FAILED:
                self._last_failed = (phase, pending)
                log.warning(f"{e.kind.value} ({e})")
            return StepResult(
                phase=phase,
                status=status,
                error=e,
                duration_s=time.monotonic() - started,
            )

        if self._live_request_id != request.request_id:
            log.info("discarding result of superseded request")
            return StepResult(
                phase=phase,
                status=StepStatus.CANCELLED,
                reason="superseded",
                duration_s=time.monotonic() - started,
            )
        self._live_request_id = None

        code_metadata = None
        if phase is Phase.CODE_PLAYGROUND:
            code_metadata = {
                "pattern_id": match.pattern.id if match.pattern else None,
                "table_name": schema.table_name,
            }
        outcome = self.parser.parse_outcome(phase, text, code_metadata=code_metadata)
        if outcome.used_fallback:
            log.warning("committed fallback artifact")

        new_state = self._state
        if pending is not None:
            new_state = new_state.with_message(pending)
        if phase is Phase.FREE_TALK:
            new_state = new_state.with_message(
                Message.create(Role.ASSISTANT, outcome.artifact.reply, Phase.FREE_TALK)
            )
        new_state = new_state.with_artifact(phase, outcome.artifact, fallback=outcome.used_fallback)

        update = {"current_phase": max(phase, new_state.current_phase)}
        quality = None
        if phase is Phase.INSIGHT_REFINE:
            quality = check_structure_quality(
                outcome.artifact, ready_threshold=self.config.quality_ready_threshold
            )
            update["quality"] = quality
            log.info(
                f"Insight quality {quality.quality_score} "
                f"(ready: {quality.ready_for_generation})"
            )
        if phase is Phase.CODE_PLAYGROUND:
            update["pattern_match"] = match
            update["target_schema"] = schema

        self._state = new_state.apply_update(update)
        self._last_failed = None
        if phase is not Phase.FREE_TALK:
            log.info(f"Entered {phase.label}")

        receipt = None
        if phase is Phase.CODE_PLAYGROUND:
            receipt = await self._persist(outcome.artifact, schema, log)
            # Only the receipt for the code still on display is recorded
            if receipt is not None and self._state.artifact(Phase.CODE_PLAYGROUND) is outcome.artifact:
                self._state = self._state.apply_update({"saved_app": receipt})

        return StepResult(
            phase=phase,
            status=StepStatus.COMPLETED,
            artifact=outcome.artifact,
            used_fallback=outcome.used_fallback,
            quality=quality,
            save_receipt=receipt,
            duration_s=time.monotonic() - started,
        )

    async def _persist(
        self,
        code: GeneratedCode,
        schema: ProjectSchema,
        log: StepLoggerAdapter,
    ) -> SaveReceipt | None:
        """Hand the finished app to the repository. Failures are logged, not raised."""
        if self.repository is None:
            return None

        insight = self._state.artifact(Phase.INSIGHT_REFINE)
        idea = self._state.source_idea
        record = AppRecord(
            name=generate_app_name(idea),
            description=insight.value if isinstance(insight, Insight) else "",
            source_idea=idea,
            schema=schema.model_dump(mode="json"),
            generated_code=code.code,
        )
        try:
            return await self.repository.save(record)
        except Exception:
            log.exception(f"Saving app '{record.name}' failed; continuing without a preview")
            return None

    def _insight_hint(self, state: SessionState) -> str | None:
        insight = state.artifact(Phase.INSIGHT_REFINE)
        if not isinstance(insight, Insight) or state.is_fallback(Phase.INSIGHT_REFINE):
            return None
        return " ".join([*insight.features, insight.target])

    def _skipped(self, phase: Phase, reason: str) -> StepResult:
        return StepResult(phase=phase, status=StepStatus.SKIPPED, reason=reason)


async def run_session(
    client: CompletionClient,
    config: AppConfig | None = None,
    idea: str = "",
    turns: Sequence[str] = (),
    repository: AppRepository | None = None,
    verbose: bool = True,
) -> SessionResult:
    """
    Convenience function: talk through the idea, then advance to ReleaseBoard.

    Stops at the first step that does not complete.

    Args:
        client: Completion client.
        config: Application configuration.
        idea: First user message.
        turns: Further FreeTalk messages.
        repository: Where the finished app is saved.
        verbose: Log per-phase progress at INFO rather than DEBUG.

    Returns:
        SessionResult with every step and the final state.
    """
    progress_level = logging.INFO if verbose else logging.DEBUG
    steps: list[StepResult] = []

    async with Orchestrator(client, config, repository=repository) as orchestrator:
        for text in [idea, *turns]:
            step = await orchestrator.talk(text)
            steps.append(step)
            if step.status is not StepStatus.COMPLETED:
                return SessionResult(False, orchestrator.state, steps)

        while orchestrator.current_phase is not Phase.RELEASE_BOARD:
            step = await orchestrator.advance()
            steps.append(step)
            if step.status is not StepStatus.COMPLETED:
                step_logger(logger, step.phase).warning(f"Session stopped: {step.status.name}")
                return SessionResult(False, orchestrator.state, steps)
            step_logger(logger, step.phase).log(
                progress_level, f"done{' (fallback)' if step.used_fallback else ''}"
            )

        return SessionResult(True, orchestrator.state, steps)
