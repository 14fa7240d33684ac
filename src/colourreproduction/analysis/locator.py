from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Optional, TYPE_CHECKING

import numpy as np

from colourreproduction.analysis.barycentric import (
    DEFAULT_DEGENERACY_TOLERANCE,
    DEFAULT_INSIDE_TOLERANCE,
    first_enclosing_simplex,
    interpolate,
)

if TYPE_CHECKING:
    import numpy.typing as npt
    from colourreproduction.analysis.tessellation import Tessellation

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class Location:
    """
    An enclosing simplex of pool samples and the target's position in it.

    Attributes:
        vertex_indices: Pool indices of the vertices (a single index for the
            degenerate "target coincides with a sample" case).
        barycentric: Coordinates of the target, one per vertex.
        simplex_id: Row in the tessellation, or None when found by search.
    """
    vertex_indices: tuple[int, ...]
    barycentric: npt.NDArray[np.float64]
    simplex_id: Optional[int] = None

    @property
    def is_single_point(self) -> bool:
        return len(self.vertex_indices) == 1

    def interpolate(self, coords: npt.ArrayLike) -> npt.NDArray[np.float64]:
        """Interpolate pool coordinates (usually the inputs) at the target's position."""
        pts = np.asarray(coords, dtype=np.float64)
        return interpolate(self.barycentric, pts[list(self.vertex_indices)])


class SimplexLocator:
    """
    Point location in image space over a tessellation built in input space.

    The answer is geometrically valid only while the input -> image mapping
    keeps orientation across neighbouring simplices. Where it folds, image
    simplices can overlap or leave gaps, and the enclosing search is the
    fallback.
    """
    def __init__(
        self,
        inside_tolerance: float = DEFAULT_INSIDE_TOLERANCE,
        degeneracy_tolerance: float = DEFAULT_DEGENERACY_TOLERANCE
    ) -> None:
        self.inside_tolerance = inside_tolerance
        self.degeneracy_tolerance = degeneracy_tolerance

    def locate(
        self,
        tessellation: Tessellation,
        coords: npt.ArrayLike,
        target: npt.ArrayLike
    ) -> Optional[Location]:
        """
        Find the simplex whose image contains `target`.

        Args:
            tessellation: Simplices over the pool (built on the inputs).
            coords: (n, d) coordinates of the pool in the locating space (images).
            target: (d, ) point to locate.

        Returns:
            The enclosing location, or None when the target lies outside every
            simplex (i.e. outside the current gamut).
        """
        pts = np.asarray(coords, dtype=np.float64)
        tgt = np.asarray(target, dtype=np.float64)
        if tgt.shape != (tessellation.dimension,) or pts.ndim != 2 or pts.shape[1] != tessellation.dimension:
            raise ValueError(
                f"Target {tgt.shape} and coordinates {pts.shape} do not match a "
                f"{tessellation.dimension}-D tessellation."
            )

        found = first_enclosing_simplex(
            pts, tessellation.simplices, tgt,
            eps=self.inside_tolerance,
            tol=self.degeneracy_tolerance,
        )
        if found is None:
            logger.debug(f"Target {tgt} is outside all {len(tessellation)} simplices.")
            return None

        row, bary = found
        return Location(
            vertex_indices=tessellation.vertices_of(row),
            barycentric=bary,
            simplex_id=row,
        )
