"""
Iteration Controller
====================
Drives a matching session: locate every target, then alternate estimate and
refinement rounds against a measurement device until each target is found,
proven out of gamut, or the round budget runs out.

Why is this file needed?
------------------------
1. Orchestration: The geometric components are stateless; this is the only
   place that owns targets, talks to `measure()` and grows the shade bank.
2. Batching: Each round issues at most two `measure()` calls (estimates, then
   refinement candidates), each covering every active target.
3. Recovery: Degenerate simplices and failed re-locations are handled per
   target, so one awkward colour never aborts the session.

Classes:
    MatchingResult: Summary of a finished session.
    IterationController: The per-target state machine and round loop.
"""
from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Callable, Iterable, List, Optional, Sequence, Union, TYPE_CHECKING

import numpy as np

from colourreproduction.analysis.barycentric import barycentric_coordinates, interpolate, is_inside
from colourreproduction.analysis.locator import Location, SimplexLocator
from colourreproduction.analysis.refinement import AdaptiveSimplexRefiner, Refinement
from colourreproduction.analysis.search import EnclosingSimplexSearch, rank_by_difference
from colourreproduction.analysis.tessellation import TessellationCache
from colourreproduction.config import MatchingSettings
from colourreproduction.errors import DegenerateSimplexError, MeasurementError, SamplePoolError
from colourreproduction.model.target import (
    IterationRecord,
    Phase,
    StopReason,
    TargetEvent,
    TargetPoint,
    TargetStatus,
    WorkingSimplex,
)
from colourreproduction.utils import clip_to_domain, delta_e_76, quantize

if TYPE_CHECKING:
    import numpy.typing as npt
    from colourreproduction.model.samples import PoolSnapshot, SamplePool
    from colourreproduction.utils import ColourDifference

logger = logging.getLogger(__name__)

# measure(batch of input codes (n, d)) -> measured images (n, d), same order
Measure = Callable[["npt.NDArray[np.float64]"], "npt.ArrayLike"]


@dataclass
class MatchingResult:
    """Outcome of `IterationController.run`."""
    targets: List[TargetPoint]
    rounds: int = 0
    measured_samples: int = 0
    found: List[int] = field(default_factory=list)
    out_of_gamut: List[int] = field(default_factory=list)
    not_found: List[int] = field(default_factory=list)

    @classmethod
    def from_targets(cls, targets: List[TargetPoint], rounds: int, measured_samples: int) -> MatchingResult:
        result = cls(targets=targets, rounds=rounds, measured_samples=measured_samples)
        for target in targets:
            if target.status == TargetStatus.FOUND:
                result.found.append(target.index)
            elif target.status == TargetStatus.OUT_OF_GAMUT:
                result.out_of_gamut.append(target.index)
            else:
                result.not_found.append(target.index)
        return result

    @property
    def best_inputs(self) -> npt.NDArray[np.float64]:
        """(m, d) best input per target, NaN where nothing was evaluated."""
        dim = self.targets[0].image_target.shape[0] if self.targets else 0
        out = np.full((len(self.targets), dim), np.nan)
        for row, target in enumerate(self.targets):
            if target.best_input_estimate is not None:
                out[row] = target.best_input_estimate
        return out


class IterationController:
    """
    Per-target state machine over a shared, growing shade bank.

    The controller only appends to the pool it is given; the caller keeps
    ownership and can persist it after the session.

    Args:
        pool: Shade bank with at least four non-coplanar 3-D samples.
        measure: Device (or simulator) mapping a batch of inputs to images.
        colour_difference: Difference metric in image space.
        settings: Session parameters; defaults are used when omitted.
    """
    def __init__(
        self,
        pool: SamplePool,
        measure: Measure,
        colour_difference: ColourDifference = delta_e_76,
        settings: Optional[MatchingSettings] = None
    ) -> None:
        self.pool = pool
        self.measure = measure
        self.colour_difference = colour_difference
        self.settings = settings or MatchingSettings()

        s = self.settings
        self.tessellations = TessellationCache()
        self.locator = SimplexLocator(
            inside_tolerance=s.inside_tolerance,
            degeneracy_tolerance=s.degeneracy_tolerance,
        )
        # A coinciding sample is returned without measurement, so it must also be a match
        self.search = EnclosingSimplexSearch(
            colour_difference=colour_difference,
            inside_tolerance=s.inside_tolerance,
            degeneracy_tolerance=s.degeneracy_tolerance,
            coincidence_tolerance=min(s.coincidence_tolerance, s.threshold),
        )
        self.refiner = AdaptiveSimplexRefiner(
            scaling_constant=s.scaling_constant,
            domain=s.domain,
            degeneracy_tolerance=s.degeneracy_tolerance,
        )

        self.rounds_run: int = 0
        self.measured_samples: int = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def make_targets(self, image_targets: npt.ArrayLike) -> List[TargetPoint]:
        """Wrap an (m, d) array of aimpoints into fresh TargetPoints."""
        aims = np.atleast_2d(np.asarray(image_targets, dtype=np.float64))
        if aims.size == 0:
            return []
        return [TargetPoint(image_target=aim, index=i) for i, aim in enumerate(aims)]

    def run(self, targets: Union[npt.ArrayLike, Sequence[TargetPoint]]) -> MatchingResult:
        """
        Run a complete session.

        Args:
            targets: Either an (m, d) array of aimpoints or TargetPoints from a
                previous run. Targets that are no longer active are left alone.

        Raises:
            SamplePoolError: If the pool is empty, not 3-D, or the targets have
                another dimension.
            MeasurementError: If `measure()` returns a batch of the wrong shape.

        Returns:
            Summary with the (mutated) targets.
        """
        target_list = self._as_targets(targets)
        if not target_list:
            logger.info("No targets given, nothing to match.")
            return MatchingResult(targets=[])
        self._check_inputs(target_list)

        rounds_before = self.rounds_run
        measured_before = self.measured_samples

        self.initialise(target_list)
        for _ in range(self.settings.max_iterations):
            if not any(t.is_active for t in target_list):
                break
            self.run_round(target_list)
        self.close(target_list)

        result = MatchingResult.from_targets(
            target_list,
            rounds=self.rounds_run - rounds_before,
            measured_samples=self.measured_samples - measured_before,
        )
        logger.info(
            f"Session finished after {result.rounds} rounds and {result.measured_samples} measurements: "
            f"{len(result.found)} found, {len(result.out_of_gamut)} out of gamut, "
            f"{len(result.not_found)} not found."
        )
        return result

    def initialise(self, targets: Iterable[TargetPoint]) -> None:
        """Locate every active target that has no working simplex yet."""
        for target in targets:
            if target.is_active and target.working_simplex is None:
                self._locate(target, round_no=self.rounds_run)

    def run_round(self, targets: Sequence[TargetPoint]) -> None:
        """One estimate phase followed by one refine phase."""
        self.rounds_run += 1
        round_no = self.rounds_run

        for target in targets:
            if target.is_active and target.pending_input is None:
                logger.debug(f"Target {target.index}: re-acquiring a simplex from the whole pool.")
                self._locate(target, round_no=round_no, initial=False)

        active = [t for t in targets if t.is_active and t.pending_input is not None]
        logger.info(f"Round {round_no}: {len(active)} active targets, pool size {len(self.pool)}.")
        if not active:
            return

        self._estimate_phase(active, round_no)
        self._refine_phase([t for t in active if t.is_active], round_no)

    def close(self, targets: Iterable[TargetPoint]) -> None:
        """
        Closing scan: compare each unresolved target with the whole pool.

        The closest sample becomes the best-effort answer if it beats what the
        rounds produced; a match within threshold promotes the target to FOUND.
        """
        for target in targets:
            if target.status == TargetStatus.FOUND or target.stop_reason == StopReason.CANCELLED:
                continue

            ranked, differences = rank_by_difference(self.pool.images, target.image_target, self.colour_difference)
            nearest = int(ranked[0])
            error = float(differences[nearest])
            if target.best_error is None or error < target.best_error:
                target.record(IterationRecord(
                    round=self.rounds_run,
                    phase=Phase.CLOSING,
                    candidate_input=np.array(self.pool.inputs[nearest]),
                    measured_image=np.array(self.pool.images[nearest]),
                    error=error,
                ))

            if target.best_error is not None and target.best_error <= self.settings.threshold:
                target.apply(TargetEvent.CLOSING_MATCH)
                target.clear_working_state()
            elif target.status == TargetStatus.NOT_FOUND_YET and target.stop_reason is None:
                target.stop_reason = StopReason.MAX_ITERATIONS
                target.clear_working_state()
                logger.info(f"Target {target.index}: no match after {self.rounds_run} rounds (best {target.best_error:.3f}).")

    def cancel(self, target: TargetPoint) -> None:
        """Stop issuing rounds for `target`; its best-so-far fields are kept."""
        if target.is_active:
            target.stop_reason = StopReason.CANCELLED
            target.clear_working_state()
            logger.info(f"Target {target.index} cancelled.")

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------
    def _estimate_phase(self, active: List[TargetPoint], round_no: int) -> None:
        batch = np.vstack([t.pending_input for t in active])
        images = self._measure_and_store(batch)

        for target, candidate, image in zip(active, batch, images):
            error = self.colour_difference(target.image_target, image)
            ws = target.working_simplex
            target.record(IterationRecord(
                round=round_no,
                phase=Phase.ESTIMATE,
                candidate_input=candidate,
                measured_image=image,
                error=error,
                simplex_inputs=ws.inputs if ws is not None else None,
                simplex_images=ws.images if ws is not None else None,
                barycentric=target.pending_barycentric,
            ))
            target.last_estimate_input = candidate
            target.last_estimate_image = image
            target.pending_input = None

            if error <= self.settings.threshold:
                target.apply(TargetEvent.ACCEPTED)
                target.clear_working_state()
                logger.debug(f"Target {target.index}: estimate accepted in round {round_no} (error {error:.3f}).")
            else:
                target.apply(TargetEvent.REJECTED)

    def _refine_phase(self, active: List[TargetPoint], round_no: int) -> None:
        snapshot = self.pool.snapshot()

        refined: List[tuple[TargetPoint, Refinement]] = []
        for target in active:
            refinement = self._refine(target, snapshot)
            if refinement is not None:
                refined.append((target, refinement))
        if not refined:
            return

        batch = np.vstack([self._to_device(r.candidates) for _, r in refined])
        images = self._measure_and_store(batch)

        for i, (target, refinement) in enumerate(refined):
            rows = slice(3 * i, 3 * i + 3)
            candidates, measured = batch[rows], images[rows]
            ws = target.working_simplex

            errors = []
            for j in range(3):
                error = self.colour_difference(target.image_target, measured[j])
                errors.append(error)
                target.record(IterationRecord(
                    round=round_no,
                    phase=Phase.REFINE,
                    candidate_input=candidates[j],
                    measured_image=measured[j],
                    error=error,
                    simplex_inputs=ws.inputs,
                    simplex_images=ws.images,
                    barycentric=refinement.barycentric[j],
                ))

            if min(errors) <= self.settings.threshold:
                target.apply(TargetEvent.ACCEPTED)
                target.clear_working_state()
                logger.debug(f"Target {target.index}: refinement candidate accepted in round {round_no}.")
                continue

            new_simplex = WorkingSimplex(
                inputs=np.vstack((target.last_estimate_input, candidates)),
                images=np.vstack((target.last_estimate_image, measured)),
            )
            self._relocate(target, new_simplex, round_no)

    # ------------------------------------------------------------------
    # Per-target steps
    # ------------------------------------------------------------------
    def _locate(self, target: TargetPoint, round_no: int, initial: bool = True) -> None:
        """
        Find an enclosing simplex over the whole pool and set the next estimate.

        Only the initial locate may prove a target out of gamut. A later miss
        (re-acquisition after a skipped round) leaves it NOT_FOUND_YET and it
        is tried again next round.
        """
        location: Optional[Location] = None
        if self.settings.use_tessellation:
            tessellation = self.tessellations.get(self.pool)
            location = self.locator.locate(tessellation, self.pool.images, target.image_target)
        if location is None:
            location = self.search.search(target.image_target, self.pool.images, self.settings.max_neighbors)

        if location is None:
            if not initial:
                target.clear_working_state()
                logger.warning(f"Target {target.index}: no enclosing simplex on re-acquisition, retrying next round.")
                return
            target.apply(TargetEvent.NOT_LOCATED)
            target.clear_working_state()
            logger.info(f"Target {target.index} is outside the gamut of {len(self.pool)} samples.")
            return

        self._start_from_location(target, location, round_no)

    def _start_from_location(self, target: TargetPoint, location: Location, round_no: int) -> None:
        indices = list(location.vertex_indices)
        inputs = np.array(self.pool.inputs[indices])
        images = np.array(self.pool.images[indices])

        if location.is_single_point:
            error = self.colour_difference(target.image_target, images[0])
            target.record(IterationRecord(
                round=round_no,
                phase=Phase.LOCATE,
                candidate_input=inputs[0],
                measured_image=images[0],
                error=error,
            ))
            target.apply(TargetEvent.ACCEPTED)
            target.clear_working_state()
            logger.debug(f"Target {target.index} coincides with sample {indices[0]}.")
            return

        target.working_simplex = WorkingSimplex(inputs=inputs, images=images, indices=tuple(indices))
        target.pending_barycentric = location.barycentric
        target.pending_input = self._to_device(interpolate(location.barycentric, inputs))
        target.record(IterationRecord(
            round=round_no,
            phase=Phase.LOCATE,
            candidate_input=target.pending_input,
            measured_image=None,
            error=None,
            simplex_inputs=inputs,
            simplex_images=images,
            barycentric=location.barycentric,
        ))
        target.apply(TargetEvent.LOCATED)

    def _refine(self, target: TargetPoint, snapshot: PoolSnapshot) -> Optional[Refinement]:
        """
        Refine the working simplex, re-acquiring it with a wider search when it
        turns out to be degenerate.

        Returns:
            The refinement, or None when the round is skipped for this target.
        """
        ws = target.working_simplex
        try:
            return self.refiner.refine(ws.inputs, ws.images, target.image_target, target.last_estimate_image)
        except DegenerateSimplexError:
            logger.debug(f"Target {target.index}: degenerate working simplex, retrying with a wider search.")

        for attempt in range(1, self.settings.max_degenerate_retries + 1):
            location = self.search.search(
                target.image_target, snapshot.images, self.settings.max_neighbors + attempt
            )
            if location is None or location.is_single_point:
                continue
            indices = list(location.vertex_indices)
            candidate_simplex = WorkingSimplex(
                inputs=np.array(snapshot.inputs[indices]),
                images=np.array(snapshot.images[indices]),
                indices=tuple(indices),
            )
            try:
                refinement = self.refiner.refine(
                    candidate_simplex.inputs,
                    candidate_simplex.images,
                    target.image_target,
                    target.last_estimate_image,
                )
            except DegenerateSimplexError:
                continue
            target.working_simplex = candidate_simplex
            return refinement

        logger.warning(
            f"Target {target.index}: no usable simplex after {self.settings.max_degenerate_retries} retries, "
            f"skipping this round."
        )
        target.working_simplex = None
        target.pending_input = None
        return None

    def _relocate(self, target: TargetPoint, new_simplex: WorkingSimplex, round_no: int) -> None:
        """Place the next estimate using the refined simplex, or the whole pool if it misses."""
        bary: Optional[npt.NDArray[np.float64]] = None
        try:
            bary = barycentric_coordinates(
                new_simplex.images, target.image_target, tol=self.settings.degeneracy_tolerance
            )
        except DegenerateSimplexError:
            logger.debug(f"Target {target.index}: refined simplex is degenerate.")

        if bary is not None and is_inside(bary, self.settings.inside_tolerance):
            target.working_simplex = new_simplex
            target.pending_barycentric = bary
            target.pending_input = self._to_device(interpolate(bary, new_simplex.inputs))
            return

        location = self.search.search(target.image_target, self.pool.images, self.settings.max_neighbors)
        if location is not None:
            logger.debug(f"Target {target.index}: refined simplex missed, re-located from the whole pool.")
            self._start_from_location(target, location, round_no)
            return

        if bary is not None:
            # Nothing brackets the target; step towards it from the refined simplex
            raw = interpolate(bary, new_simplex.inputs)
            target.working_simplex = new_simplex
            target.pending_barycentric = bary
            target.pending_input = self._to_device(raw)
            logger.debug(f"Target {target.index}: extrapolating from the refined simplex.")
            return

        logger.warning(f"Target {target.index}: lost its simplex in round {round_no}, re-acquiring next round.")
        target.working_simplex = None
        target.pending_input = None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _to_device(self, values: npt.ArrayLike) -> npt.NDArray[np.float64]:
        """Clip to the domain and round to the device's quantisation."""
        clipped, _ = clip_to_domain(values, self.settings.domain)
        clipped, _ = clip_to_domain(quantize(clipped, self.settings.quantization_levels), self.settings.domain)
        return clipped

    def _measure_and_store(self, batch: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        images = np.asarray(self.measure(batch), dtype=np.float64)
        if images.shape != batch.shape:
            raise MeasurementError(f"measure() returned shape {images.shape} for a batch of shape {batch.shape}.")
        if not np.all(np.isfinite(images)):
            raise MeasurementError("measure() returned non-finite values.")

        self.pool.extend(batch, images)
        self.measured_samples += batch.shape[0]
        logger.debug(f"Measured {batch.shape[0]} samples, pool size {len(self.pool)}.")
        return images

    def _as_targets(self, targets: Union[npt.ArrayLike, Sequence[TargetPoint]]) -> List[TargetPoint]:
        if isinstance(targets, (list, tuple)) and targets and isinstance(targets[0], TargetPoint):
            return list(targets)
        return self.make_targets(targets)

    def _check_inputs(self, targets: List[TargetPoint]) -> None:
        if len(self.pool) == 0:
            raise SamplePoolError("Cannot match colours against an empty sample pool.")
        if self.pool.dimension != 3:
            raise SamplePoolError(
                f"Adaptive refinement works in 3-D colour spaces, the pool is {self.pool.dimension}-D."
            )
        for target in targets:
            if target.image_target.shape != (self.pool.dimension,):
                raise SamplePoolError(
                    f"Target {target.index} has shape {target.image_target.shape}, "
                    f"the pool holds {self.pool.dimension}-D samples."
                )
