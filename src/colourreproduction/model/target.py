"""
Target State
============
Per-colour state of a matching session and the transition table that drives it.

Classes:
    TargetStatus: NOT_FOUND_YET, FOUND, OUT_OF_GAMUT.
    TargetEvent: Outcomes the controller reports after each step.
    StopReason: Why a target stopped while still unresolved.
    Phase: Which step of a round produced an iteration record.
    WorkingSimplex: The private enclosing (or best available) simplex of a target.
    IterationRecord: Append-only audit entry for one measured candidate.
    TargetPoint: One requested colour and everything learned about it.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, StrEnum
import logging
from typing import Dict, List, Optional, Tuple, TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)


class TargetStatus(StrEnum):
    NOT_FOUND_YET = "not_found_yet"
    FOUND = "found"
    OUT_OF_GAMUT = "out_of_gamut"


class TargetEvent(Enum):
    LOCATED = "located"
    NOT_LOCATED = "not_located"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CLOSING_MATCH = "closing_match"


class StopReason(StrEnum):
    MAX_ITERATIONS = "max_iterations"
    CANCELLED = "cancelled"


class Phase(StrEnum):
    LOCATE = "locate"
    ESTIMATE = "estimate"
    REFINE = "refine"
    CLOSING = "closing"


# (status, event) -> status. Pairs not listed leave the status unchanged.
_TRANSITIONS: Dict[Tuple[TargetStatus, TargetEvent], TargetStatus] = {
    (TargetStatus.NOT_FOUND_YET, TargetEvent.NOT_LOCATED): TargetStatus.OUT_OF_GAMUT,
    (TargetStatus.NOT_FOUND_YET, TargetEvent.ACCEPTED): TargetStatus.FOUND,
    (TargetStatus.NOT_FOUND_YET, TargetEvent.CLOSING_MATCH): TargetStatus.FOUND,
    # A boundary colour that could not be bracketed may still be matched by the
    # final scan over the whole shade bank
    (TargetStatus.OUT_OF_GAMUT, TargetEvent.CLOSING_MATCH): TargetStatus.FOUND,
}


def next_status(status: TargetStatus, event: TargetEvent) -> TargetStatus:
    """
    Single transition function of the per-target state machine.

    FOUND is terminal. OUT_OF_GAMUT only moves on a closing-scan match.
    NOT_FOUND_YET stays put on LOCATED and REJECTED.
    """
    return _TRANSITIONS.get((status, event), status)


@dataclass(eq=False)
class WorkingSimplex:
    """
    Vertices of a target's current simplex, in both spaces.

    Attributes:
        indices: Pool indices of the vertices, or None when built from a
            fresh local construction.
        inputs: (k, d) input vertices.
        images: (k, d) image vertices.
    """
    inputs: npt.NDArray[np.float64]
    images: npt.NDArray[np.float64]
    indices: Optional[Tuple[int, ...]] = None

    @property
    def n_vertices(self) -> int:
        return int(self.inputs.shape[0])


@dataclass(frozen=True, eq=False)
class IterationRecord:
    """Snapshot of one measured (or looked-up) candidate for a target."""
    round: int
    phase: Phase
    candidate_input: npt.NDArray[np.float64]
    measured_image: Optional[npt.NDArray[np.float64]]
    error: Optional[float]
    simplex_inputs: Optional[npt.NDArray[np.float64]] = None
    simplex_images: Optional[npt.NDArray[np.float64]] = None
    barycentric: Optional[npt.NDArray[np.float64]] = None


@dataclass(eq=False)
class TargetPoint:
    """
    One requested colour.

    Created once per aimpoint, mutated only by the IterationController and
    finalised into FOUND or OUT_OF_GAMUT (or left NOT_FOUND_YET with a stop
    reason). Best-so-far fields are None until something has been measured.
    """
    image_target: npt.NDArray[np.float64]
    index: int = 0
    status: TargetStatus = TargetStatus.NOT_FOUND_YET
    best_input_estimate: Optional[npt.NDArray[np.float64]] = None
    best_image_achieved: Optional[npt.NDArray[np.float64]] = None
    best_error: Optional[float] = None
    stop_reason: Optional[StopReason] = None
    history: List[IterationRecord] = field(default_factory=list)

    # Private working state, never shared between targets
    working_simplex: Optional[WorkingSimplex] = field(default=None, repr=False)
    pending_input: Optional[npt.NDArray[np.float64]] = field(default=None, repr=False)
    pending_barycentric: Optional[npt.NDArray[np.float64]] = field(default=None, repr=False)
    last_estimate_image: Optional[npt.NDArray[np.float64]] = field(default=None, repr=False)
    last_estimate_input: Optional[npt.NDArray[np.float64]] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        self.image_target = np.array(self.image_target, dtype=np.float64)

    @property
    def is_active(self) -> bool:
        """True while the controller should keep issuing rounds for this target."""
        return self.status == TargetStatus.NOT_FOUND_YET and self.stop_reason is None

    def apply(self, event: TargetEvent) -> TargetStatus:
        """Feed an event through the transition table and store the new status."""
        new_status = next_status(self.status, event)
        if new_status != self.status:
            logger.debug(f"Target {self.index}: {self.status} -> {new_status} ({event.value}).")
        self.status = new_status
        return new_status

    def record(self, entry: IterationRecord) -> bool:
        """
        Append an audit entry and keep the best result so far.

        Returns:
            True if the entry improved the best error.
        """
        self.history.append(entry)
        if entry.error is None or entry.measured_image is None:
            return False
        if self.best_error is None or entry.error < self.best_error:
            self.best_error = float(entry.error)
            self.best_input_estimate = np.array(entry.candidate_input, dtype=np.float64)
            self.best_image_achieved = np.array(entry.measured_image, dtype=np.float64)
            return True
        return False

    def clear_working_state(self) -> None:
        self.working_simplex = None
        self.pending_input = None
        self.pending_barycentric = None
        self.last_estimate_image = None
        self.last_estimate_input = None

    @property
    def error_history(self) -> List[float]:
        """Best error after each recorded entry (non-increasing)."""
        out: List[float] = []
        best: Optional[float] = None
        for entry in self.history:
            if entry.error is not None and (best is None or entry.error < best):
                best = entry.error
            if best is not None:
                out.append(best)
        return out
