"""
Synthetic Matching Session
==========================
Runs a complete session against a simulated printer, so the engine can be
exercised without hardware.

Why is this file needed?
------------------------
1. Wiring: It shows how a shade bank, a `measure()` callable and the
   controller fit together.
2. Smoke test: A run on the simulated device should find every in-gamut
   target within a few rounds.
"""
from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Optional, Sequence, TYPE_CHECKING

import numpy as np

from colourreproduction.analysis.sampling import coverage_errors, make_input_grid
from colourreproduction.config import (
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_MAX_NEIGHBORS,
    DEFAULT_SCALING_CONSTANT,
    DEFAULT_THRESHOLD,
    EIGHT_BIT_LEVELS,
    MatchingSettings,
)
from colourreproduction.controller.iteration import IterationController
from colourreproduction.logging_config import setup_logging
from colourreproduction.model.io import ShadeBankIO
from colourreproduction.model.samples import SamplePool

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)


class SyntheticPrinter:
    """
    Smooth, invertible stand-in for a printer plus spectrophotometer.

    Inputs are passed through a power-law tone curve and a fixed 3×3 mixing
    matrix, giving Lab-like coordinates of roughly the right magnitude.
    """
    MIXING = np.array([
        [30.0, 60.0, 10.0],
        [80.0, -70.0, -10.0],
        [40.0, 30.0, -70.0],
    ])

    def __init__(self, gamma: float = 1.8, noise: float = 0.0, seed: Optional[int] = None) -> None:
        self.gamma = gamma
        self.noise = noise
        self.rng = np.random.default_rng(seed)
        self.calls = 0

    def __call__(self, batch: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        self.calls += 1
        images = np.clip(batch, 0.0, 1.0) ** self.gamma @ self.MIXING.T
        if self.noise:
            images = images + self.rng.normal(scale=self.noise, size=images.shape)
        return images


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Match random colours on a simulated printer")
    parser.add_argument("--targets", type=int, default=10, help="Number of random in-gamut targets")
    parser.add_argument("--grid", type=int, default=5, help="Grid divisions of the initial shade bank")
    parser.add_argument("--threshold", type=float, default=DEFAULT_THRESHOLD)
    parser.add_argument("--max-iterations", type=int, default=DEFAULT_MAX_ITERATIONS)
    parser.add_argument("--max-neighbors", type=int, default=DEFAULT_MAX_NEIGHBORS)
    parser.add_argument("--scaling-constant", type=float, default=DEFAULT_SCALING_CONSTANT)
    parser.add_argument("--noise", type=float, default=0.0, help="Std. dev. of simulated measurement noise")
    parser.add_argument("--seed", type=int, default=0)
    parser.add_argument("--save", type=Path, default=None, help="Write the final shade bank to this .h5 file")
    parser.add_argument("--debug", action="store_true")
    args = parser.parse_args(argv)

    setup_logging(level=logging.DEBUG if args.debug else logging.INFO)

    printer = SyntheticPrinter(noise=args.noise, seed=args.seed)
    settings = MatchingSettings(
        threshold=args.threshold,
        max_iterations=args.max_iterations,
        max_neighbors=args.max_neighbors,
        scaling_constant=args.scaling_constant,
        quantization_levels=EIGHT_BIT_LEVELS,
    )

    grid = make_input_grid(args.grid)
    pool = SamplePool.from_arrays(grid, printer(grid))
    logger.info(f"Initial shade bank: {len(pool)} samples.")

    rng = np.random.default_rng(args.seed)
    aims = printer(rng.uniform(0.05, 0.95, size=(args.targets, 3)))
    # One colour the device cannot print
    aims = np.vstack((aims, [[150.0, 0.0, 0.0]]))

    controller = IterationController(pool, printer, settings=settings)
    result = controller.run(aims)

    for target in result.targets:
        logger.info(
            f"Target {target.index}: {target.status} "
            f"(error {target.best_error:.3f}, input {np.round(target.best_input_estimate, 4).tolist()})"
        )

    coverage = coverage_errors(pool, aims[:-1])
    logger.info(f"Largest remaining distance to the bank: {coverage.max():.3f}.")

    if args.save is not None:
        ShadeBankIO.save_hdf5(pool, args.save, settings=settings)


if __name__ == "__main__":
    main()
