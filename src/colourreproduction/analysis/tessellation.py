"""
Tessellation of the Shade Bank
==============================
Delaunay tessellation of the sample inputs, and a cache keyed by pool version.

Why is this file needed?
------------------------
1. Topology: The input codes are tessellated (not the measured colours), and
   the same simplices are then evaluated in image space by the locator.
2. Cost: Qhull is the most expensive call in a session, so the tessellation
   is treated as a derived artefact and rebuilt only when the pool changed.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Optional, TYPE_CHECKING

import numpy as np
from scipy.spatial import Delaunay, QhullError

from colourreproduction.errors import DegenerateInputError

if TYPE_CHECKING:
    import numpy.typing as npt
    from colourreproduction.model.samples import SamplePool

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class Tessellation:
    """
    Simplicial decomposition of the convex hull of a point set.

    Attributes:
        simplices: (n_simplices, d + 1) array of point indices.
        version: Pool version the tessellation was built from (-1 if unknown).
    """
    simplices: npt.NDArray[np.int64]
    version: int = -1

    def __len__(self) -> int:
        return int(self.simplices.shape[0])

    @property
    def dimension(self) -> int:
        return int(self.simplices.shape[1]) - 1

    def vertices_of(self, simplex_id: int) -> tuple[int, ...]:
        return tuple(int(i) for i in self.simplices[simplex_id])


class Tessellator:
    """
    Thin wrapper around scipy's Qhull-based Delaunay triangulation.
    """

    @staticmethod
    def build(points: npt.ArrayLike, version: int = -1) -> Tessellation:
        """
        Tessellate a set of points.

        Args:
            points: (n, d) array, at least d + 1 affinely independent rows.
            version: Pool version recorded on the result.

        Raises:
            DegenerateInputError: If there are too few points or they span zero volume.

        Returns:
            The tessellation of the convex hull of `points`.
        """
        pts = np.asarray(points, dtype=np.float64)
        if pts.ndim != 2:
            raise DegenerateInputError(f"Expected an (n, d) array of points, got shape {pts.shape}.")

        n_points, dim = pts.shape
        if n_points < dim + 1:
            raise DegenerateInputError(
                f"Need at least {dim + 1} points to tessellate {dim}-D space, got {n_points}."
            )

        # Qhull reports flat input with a long diagnostic, check the rank first
        centred = pts - pts.mean(axis=0)
        if np.linalg.matrix_rank(centred) < dim:
            raise DegenerateInputError(f"All {n_points} points lie in a lower-dimensional subspace.")

        try:
            delaunay = Delaunay(pts)
        except QhullError as e:
            raise DegenerateInputError(f"Delaunay tessellation failed: {e}") from e

        simplices = np.ascontiguousarray(delaunay.simplices, dtype=np.int64)
        if len(delaunay.coplanar):
            logger.debug(f"{len(delaunay.coplanar)} duplicate or coplanar points are not tessellation vertices.")
        logger.debug(f"Tessellated {n_points} points into {simplices.shape[0]} simplices.")
        return Tessellation(simplices=simplices, version=version)


class TessellationCache:
    """
    Holds the tessellation of a pool and rebuilds it when the pool version moves.
    """
    def __init__(self) -> None:
        self._tessellation: Optional[Tessellation] = None
        self.builds: int = 0

    def get(self, pool: SamplePool) -> Tessellation:
        if self._tessellation is None or self._tessellation.version != pool.version:
            logger.info(f"Building tessellation for {len(pool)} samples (pool version {pool.version}).")
            self._tessellation = Tessellator.build(pool.inputs, version=pool.version)
            self.builds += 1
        return self._tessellation

    def invalidate(self) -> None:
        self._tessellation = None


def edge_lengths(tessellation: Tessellation, coords: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """
    Lengths of all distinct edges of a tessellation, measured in `coords`.

    Measuring the edges in image space shows how finely the shade bank samples
    the gamut, which bounds the error of a single interpolation step.

    Returns:
        1-D array of edge lengths, one per unique vertex pair.
    """
    pts = np.asarray(coords, dtype=np.float64)
    simplices = tessellation.simplices
    n_vertices = simplices.shape[1]

    pairs = [
        np.sort(simplices[:, [i, j]], axis=1)
        for i in range(n_vertices)
        for j in range(i + 1, n_vertices)
    ]
    if not pairs or simplices.shape[0] == 0:
        return np.empty(0, dtype=np.float64)

    edges = np.unique(np.vstack(pairs), axis=0)
    return np.linalg.norm(pts[edges[:, 0]] - pts[edges[:, 1]], axis=1)
