"""
MATURA orchestration core.

Turns a free-form app idea into a generated application through six phases:
FreeTalk, InsightRefine, SketchView, UXBuild, CodePlayground, ReleaseBoard.
"""

from matura.config import AppConfig, load_config
from matura.errors import FailureKind, GenerationError
from matura.orchestrator import Orchestrator, StepResult, StepStatus, run_session
from matura.state import Phase, SessionState

__version__ = "0.1.0"

__all__ = [
    "AppConfig",
    "FailureKind",
    "GenerationError",
    "Orchestrator",
    "Phase",
    "SessionState",
    "StepResult",
    "StepStatus",
    "load_config",
    "run_session",
]
