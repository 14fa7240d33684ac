"""
Enclosing Simplex Search
========================
Combinatorial search for (d + 1) nearby samples whose image simplex contains a
target. Works directly on the pool, without a precomputed tessellation, so it
stays valid while samples are appended between rounds.
"""
from __future__ import annotations

from itertools import combinations
import logging
from typing import Optional, TYPE_CHECKING

import numpy as np

from colourreproduction.analysis.barycentric import (
    DEFAULT_DEGENERACY_TOLERANCE,
    DEFAULT_INSIDE_TOLERANCE,
    _solve_barycentric,
)
from colourreproduction.analysis.locator import Location
from colourreproduction.utils import delta_e_76

if TYPE_CHECKING:
    import numpy.typing as npt
    from colourreproduction.utils import ColourDifference

logger = logging.getLogger(__name__)


def rank_by_difference(
    images: npt.ArrayLike,
    target: npt.ArrayLike,
    colour_difference: ColourDifference = delta_e_76
) -> tuple[npt.NDArray[np.int64], npt.NDArray[np.float64]]:
    """
    Rank pool samples by colour difference to a target.

    Returns:
        (indices sorted from nearest to farthest, difference of every sample
        in pool order). The sort is stable, so ties keep pool order.
    """
    imgs = np.asarray(images, dtype=np.float64)
    tgt = np.asarray(target, dtype=np.float64)
    differences = np.array([colour_difference(tgt, image) for image in imgs], dtype=np.float64)
    ranked = np.argsort(differences, kind="stable").astype(np.int64)
    return ranked, differences


class EnclosingSimplexSearch:
    """
    Grow a neighbourhood of the k nearest samples until some (d + 1) of them
    bracket the target.

    At each k only the combinations that contain the k-th nearest sample are
    tested, so no combination is examined twice. The first enclosing
    combination in enumeration order wins; no attempt is made to prefer a
    smaller or better conditioned simplex.
    """
    def __init__(
        self,
        colour_difference: ColourDifference = delta_e_76,
        inside_tolerance: float = DEFAULT_INSIDE_TOLERANCE,
        degeneracy_tolerance: float = DEFAULT_DEGENERACY_TOLERANCE,
        coincidence_tolerance: float = 1e-9
    ) -> None:
        self.colour_difference = colour_difference
        self.inside_tolerance = inside_tolerance
        self.degeneracy_tolerance = degeneracy_tolerance
        self.coincidence_tolerance = coincidence_tolerance
        self.last_combinations_tested: int = 0

    def search(
        self,
        target: npt.ArrayLike,
        images: npt.ArrayLike,
        max_neighbors: int
    ) -> Optional[Location]:
        """
        Look for an enclosing simplex among the nearest samples.

        Args:
            target: (d, ) image-space target.
            images: (n, d) image coordinates of the pool.
            max_neighbors: Largest neighbourhood to examine (capped at n).

        Returns:
            The first enclosing location, a single-sample location if the
            nearest sample coincides with the target, or None.
        """
        imgs = np.ascontiguousarray(images, dtype=np.float64)
        tgt = np.ascontiguousarray(target, dtype=np.float64)
        if imgs.ndim != 2 or tgt.shape != (imgs.shape[1],):
            raise ValueError(f"Target {tgt.shape} does not match pool images {imgs.shape}.")

        self.last_combinations_tested = 0
        n_samples, dim = imgs.shape
        if n_samples == 0:
            return None

        ranked, differences = rank_by_difference(imgs, tgt, self.colour_difference)

        nearest = int(ranked[0])
        if differences[nearest] <= self.coincidence_tolerance:
            logger.debug(f"Target coincides with sample {nearest}.")
            return Location(vertex_indices=(nearest,), barycentric=np.ones(1, dtype=np.float64))

        limit = min(max_neighbors, n_samples)
        vertices = np.empty((dim + 1, dim), dtype=np.float64)

        for k in range(dim + 1, limit + 1):
            newest = int(ranked[k - 1])
            for combo in combinations(range(k - 1), dim):
                indices = [int(ranked[r]) for r in combo] + [newest]
                vertices[:] = imgs[indices]
                self.last_combinations_tested += 1

                bary, ok = _solve_barycentric(vertices, tgt, self.degeneracy_tolerance)
                if not ok:
                    continue
                if np.all(bary >= -self.inside_tolerance) and np.all(bary <= 1.0 + self.inside_tolerance):
                    logger.debug(
                        f"Enclosing simplex {indices} found among {k} nearest samples "
                        f"after {self.last_combinations_tested} combinations."
                    )
                    return Location(vertex_indices=tuple(indices), barycentric=bary.copy())

        logger.debug(
            f"No enclosing simplex among the {limit} nearest samples "
            f"({self.last_combinations_tested} combinations tested)."
        )
        return None
