"""Processing stage transition rules."""

from vomage.errors import StageTransitionError
from vomage.schemas.job import ProcessingStage

_TERMINAL_STAGES: set[ProcessingStage] = {
    ProcessingStage.COMPLETE,
    ProcessingStage.ERROR,
}

# Self-transitions carry intermediate progress within a stage.
_ALLOWED_TRANSITIONS: dict[ProcessingStage, set[ProcessingStage]] = {
    ProcessingStage.UPLOADED: {ProcessingStage.TRANSCRIBING, ProcessingStage.COMPLETE, ProcessingStage.ERROR},
    ProcessingStage.TRANSCRIBING: {ProcessingStage.TRANSCRIBING, ProcessingStage.ANALYZING, ProcessingStage.ERROR},
    ProcessingStage.ANALYZING: {ProcessingStage.ANALYZING, ProcessingStage.GENERATING, ProcessingStage.ERROR},
    ProcessingStage.GENERATING: {ProcessingStage.GENERATING, ProcessingStage.COMPLETE, ProcessingStage.ERROR},
    ProcessingStage.COMPLETE: set(),
    ProcessingStage.ERROR: set(),
}


def is_terminal(stage: ProcessingStage) -> bool:
    return stage in _TERMINAL_STAGES


def allowed_next_stages(stage: ProcessingStage) -> list[ProcessingStage]:
    """Return deterministically ordered allowed successors for a stage."""
    return sorted(_ALLOWED_TRANSITIONS.get(stage, set()), key=lambda s: s.value)


def ensure_transition(old_stage: ProcessingStage | None, new_stage: ProcessingStage) -> None:
    """Validate transition according to the pipeline lifecycle.

    ``old_stage`` is ``None`` for a job that has no recorded status yet; the only
    legal first stage is ``UPLOADED``.
    """
    if old_stage is None:
        if new_stage is ProcessingStage.UPLOADED:
            return
        raise StageTransitionError(
            "Pipeline must start in UPLOADED",
            details={"current_stage": None, "attempted_stage": new_stage, "allowed_next_stages": [ProcessingStage.UPLOADED]},
        )

    if old_stage in _TERMINAL_STAGES:
        raise StageTransitionError(
            "Terminal stage cannot be mutated",
            details={"current_stage": old_stage, "attempted_stage": new_stage, "allowed_next_stages": []},
        )

    if new_stage not in _ALLOWED_TRANSITIONS.get(old_stage, set()):
        raise StageTransitionError(
            "Invalid stage transition",
            details={
                "current_stage": old_stage,
                "attempted_stage": new_stage,
                "allowed_next_stages": allowed_next_stages(old_stage),
            },
        )
