"""Progress bands allotted to each pipeline stage."""

from __future__ import annotations

from dataclasses import dataclass

from vomage.schemas.job import ProcessingStage


@dataclass(frozen=True, slots=True)
class StageBand:
    start: int
    end: int
    estimated_ms: int | None

    def scale(self, fraction: float) -> int:
        """Map a 0..1 fraction of stage completion into this band."""
        bounded = min(max(fraction, 0.0), 1.0)
        return self.start + int((self.end - self.start) * bounded)


STAGE_BANDS: dict[ProcessingStage, StageBand] = {
    ProcessingStage.UPLOADED: StageBand(start=0, end=0, estimated_ms=10_000),
    ProcessingStage.TRANSCRIBING: StageBand(start=10, end=40, estimated_ms=8_000),
    ProcessingStage.ANALYZING: StageBand(start=40, end=70, estimated_ms=5_000),
    # GENERATING stops at 99; only the COMPLETE transition may report 100.
    ProcessingStage.GENERATING: StageBand(start=70, end=99, estimated_ms=3_000),
    ProcessingStage.COMPLETE: StageBand(start=100, end=100, estimated_ms=None),
}


def band_for(stage: ProcessingStage) -> StageBand:
    return STAGE_BANDS[stage]


def clamp_progress(*, stage: ProcessingStage, proposed: int, previous: int) -> int:
    """Clamp a proposed progress value into the stage band without ever going backwards."""
    band = STAGE_BANDS.get(stage)
    value = proposed
    if band is not None:
        value = min(max(value, band.start), band.end)
    value = min(max(value, 0), 100)
    return max(value, previous)
