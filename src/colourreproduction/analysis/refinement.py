from __future__ import annotations

from dataclasses import dataclass
import logging
from math import sqrt
from typing import TYPE_CHECKING
import warnings

import numpy as np

from colourreproduction.analysis.barycentric import (
    DEFAULT_DEGENERACY_TOLERANCE,
    barycentric_coordinates,
    interpolate,
)
from colourreproduction.config import DEFAULT_SCALING_CONSTANT, UNIT_DOMAIN
from colourreproduction.errors import OutOfDomainCandidateWarning
from colourreproduction.utils import clip_to_domain

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)


# Unit prototype of the new simplex. The error axis is z; the fourth vertex,
# (0, 0, 1), maps onto the measured estimate and is already in the shade bank.
# The other three form an equilateral triangle one unit behind the target.
PROTOTYPE_VERTICES = np.array([
    [1.0, 0.0, -1.0],
    [-0.5, sqrt(3.0) / 2.0, -1.0],
    [-0.5, -sqrt(3.0) / 2.0, -1.0],
])


def error_basis(error: npt.ArrayLike, tol: float = 1e-9) -> npt.NDArray[np.float64]:
    """
    Orthonormal 3×3 basis whose third column points along `error`.

    The columns are built algebraically from e = (e1, e2, e3):

        c1 = (-e1 e3 / e2, -e3, e2 + e1² / e2)
        c2 = (1, -e1 / e2, 0)
        c3 = (e1, e2, e3)

    and normalised. When e2 is (relatively) zero that construction divides by
    zero; the basis is then completed with cross products against the
    coordinate axis least aligned with e.

    Args:
        error: (3, ) error vector, estimate minus target.
        tol: |e2| / |e| below which the cross-product construction is used.

    Raises:
        ValueError: If the error vector is not 3-D or is zero.

    Returns:
        (3, 3) array, orthonormal columns, third column e / |e|.
    """
    e = np.asarray(error, dtype=np.float64)
    if e.shape != (3,):
        raise ValueError(f"The refinement basis is defined for 3-D errors, got shape {e.shape}.")

    norm = float(np.linalg.norm(e))
    if norm == 0.0:
        raise ValueError("Zero error vector: the estimate already reproduces the target.")

    e1, e2, e3 = e
    if abs(e2) > tol * norm:
        basis = np.array([
            [-e1 * e3 / e2, 1.0, e1],
            [-e3, -e1 / e2, e2],
            [e2 + e1 ** 2 / e2, 0.0, e3],
        ])
    else:
        unit = e / norm
        helper = np.zeros(3)
        helper[int(np.argmin(np.abs(unit)))] = 1.0
        second = np.cross(unit, helper)
        first = np.cross(second, unit)
        basis = np.column_stack((first, second, unit))

    return basis / np.linalg.norm(basis, axis=0)


@dataclass(frozen=True, eq=False)
class Refinement:
    """
    Result of one refinement step.

    Attributes:
        candidates: (3, 3) new input codes to measure, clipped to the domain.
        image_vertices: (3, 3) image-space points the candidates aim at.
        barycentric: (3, 4) coordinates of the image vertices in the old simplex.
        clipped_components: Number of candidate components moved into the domain.
    """
    candidates: npt.NDArray[np.float64]
    image_vertices: npt.NDArray[np.float64]
    barycentric: npt.NDArray[np.float64]
    clipped_components: int


class AdaptiveSimplexRefiner:
    """
    Constructs a smaller simplex around a target from the error of the last estimate.

    The new image vertices are placed on the far side of the target from the
    measured estimate, spread perpendicular to the error. Because the mapping
    is only known at the old simplex's vertices, each new vertex is expressed
    in barycentric coordinates of the old image simplex and the same weights
    are applied to the old input vertices.
    """
    def __init__(
        self,
        scaling_constant: float = DEFAULT_SCALING_CONSTANT,
        domain: tuple[float, float] = UNIT_DOMAIN,
        degeneracy_tolerance: float = DEFAULT_DEGENERACY_TOLERANCE,
        basis_tolerance: float = 1e-9
    ) -> None:
        if scaling_constant <= 0.0:
            raise ValueError(f"scaling_constant must be positive, got {scaling_constant}.")
        self.scaling_constant = scaling_constant
        self.domain = domain
        self.degeneracy_tolerance = degeneracy_tolerance
        self.basis_tolerance = basis_tolerance

    def new_image_vertices(
        self,
        target_image: npt.ArrayLike,
        estimate_image: npt.ArrayLike
    ) -> npt.NDArray[np.float64]:
        """
        Image-space vertices of the refined simplex (excluding the estimate itself).

        Returns:
            (3, 3) array, one vertex per row.
        """
        target = np.asarray(target_image, dtype=np.float64)
        error = np.asarray(estimate_image, dtype=np.float64) - target

        basis = error_basis(error, tol=self.basis_tolerance)
        transform = float(np.linalg.norm(error)) * basis
        prototypes = self.scaling_constant * PROTOTYPE_VERTICES

        return (transform @ prototypes.T).T + target

    def refine(
        self,
        vertex_inputs: npt.ArrayLike,
        vertex_images: npt.ArrayLike,
        target_image: npt.ArrayLike,
        estimate_image: npt.ArrayLike
    ) -> Refinement:
        """
        Three new input candidates that should bracket the target more tightly.

        Args:
            vertex_inputs: (4, 3) input vertices of the current simplex.
            vertex_images: (4, 3) image vertices of the current simplex.
            target_image: (3, ) target.
            estimate_image: (3, ) measured image of the current best estimate.

        Raises:
            ValueError: On shape mismatch or a zero error vector.
            DegenerateSimplexError: If the current image simplex has zero volume.

        Returns:
            The refinement, with candidates clipped to the domain.
        """
        inputs = np.asarray(vertex_inputs, dtype=np.float64)
        images = np.asarray(vertex_images, dtype=np.float64)
        if inputs.shape != (4, 3) or images.shape != (4, 3):
            raise ValueError(
                f"Refinement needs a tetrahedron in 3-D, got inputs {inputs.shape} and images {images.shape}."
            )

        image_vertices = self.new_image_vertices(target_image, estimate_image)

        bary = np.vstack([
            barycentric_coordinates(images, vertex, tol=self.degeneracy_tolerance)
            for vertex in image_vertices
        ])
        raw_candidates = np.vstack([interpolate(weights, inputs) for weights in bary])

        candidates, n_clipped = clip_to_domain(raw_candidates, self.domain)
        if n_clipped:
            msg = (
                f"{n_clipped} refined candidate component(s) outside {self.domain} were clipped; "
                f"raw candidates {np.round(raw_candidates, 4).tolist()}"
            )
            logger.warning(msg)
            warnings.warn(msg, OutOfDomainCandidateWarning, stacklevel=2)

        return Refinement(
            candidates=candidates,
            image_vertices=image_vertices,
            barycentric=bary,
            clipped_components=n_clipped,
        )
