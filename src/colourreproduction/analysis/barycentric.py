from __future__ import annotations

from math import factorial
from typing import TYPE_CHECKING, Optional

import numpy as np
import numba as nb

from colourreproduction.errors import DegenerateSimplexError

if TYPE_CHECKING:
    import numpy.typing as npt


DEFAULT_INSIDE_TOLERANCE = 1e-9
DEFAULT_DEGENERACY_TOLERANCE = 1e-12


@nb.jit(cache=True)
def _solve_barycentric(
    vertices: npt.NDArray[np.float64],
    point: npt.NDArray[np.float64],
    tol: float
) -> tuple[npt.NDArray[np.float64], bool]:
    """
    Barycentric coordinates of `point` in the simplex spanned by `vertices`.

    Solves (V[:d] - V[d])ᵀ β = P - V[d] by Gaussian elimination with partial
    pivoting, then β[d] = 1 - Σ β[:d].

    Args:
        vertices: (d + 1, d) array, one vertex per row.
        point: (d, ) array.
        tol: Pivot threshold relative to the largest edge component.

    Returns:
        The (d + 1, ) coordinates and False if the simplex is degenerate
        (in which case the coordinates are undefined).
    """
    n = point.shape[0]
    a = np.empty((n, n), dtype=np.float64)
    b = np.empty(n, dtype=np.float64)
    coords = np.zeros(n + 1, dtype=np.float64)

    scale = 0.0
    for i in range(n):
        for j in range(n):
            a[i, j] = vertices[j, i] - vertices[n, i]
            if abs(a[i, j]) > scale:
                scale = abs(a[i, j])
        b[i] = point[i] - vertices[n, i]

    if scale == 0.0:
        return coords, False

    for k in range(n):
        p = k
        best = abs(a[k, k])
        for r in range(k + 1, n):
            if abs(a[r, k]) > best:
                best = abs(a[r, k])
                p = r
        if best <= tol * scale:
            return coords, False
        if p != k:
            for c in range(n):
                tmp = a[k, c]
                a[k, c] = a[p, c]
                a[p, c] = tmp
            tmp = b[k]
            b[k] = b[p]
            b[p] = tmp
        for r in range(k + 1, n):
            f = a[r, k] / a[k, k]
            for c in range(k, n):
                a[r, c] -= f * a[k, c]
            b[r] -= f * b[k]

    total = 0.0
    for i in range(n - 1, -1, -1):
        s = b[i]
        for c in range(i + 1, n):
            s -= a[i, c] * coords[c]
        coords[i] = s / a[i, i]
        total += coords[i]
    coords[n] = 1.0 - total

    return coords, True


@nb.jit(cache=True)
def _first_enclosing_simplex(
    coords: npt.NDArray[np.float64],
    simplices: npt.NDArray[np.int64],
    target: npt.NDArray[np.float64],
    eps: float,
    tol: float
) -> tuple[int, npt.NDArray[np.float64]]:
    """
    Scan simplices in order and return the first one containing `target`.

    Simplices that are degenerate in `coords` are skipped.

    Returns:
        (simplex row, barycentric coordinates), or (-1, undefined) if none encloses the target.
    """
    n_vertices = simplices.shape[1]
    dim = coords.shape[1]
    verts = np.empty((n_vertices, dim), dtype=np.float64)

    for s in range(simplices.shape[0]):
        for k in range(n_vertices):
            for c in range(dim):
                verts[k, c] = coords[simplices[s, k], c]

        bary, ok = _solve_barycentric(verts, target, tol)
        if not ok:
            continue

        inside = True
        for v in bary:
            if v < -eps or v > 1.0 + eps:
                inside = False
                break
        if inside:
            return s, bary

    return -1, np.zeros(n_vertices, dtype=np.float64)


def _as_simplex(vertices: npt.ArrayLike) -> npt.NDArray[np.float64]:
    verts = np.ascontiguousarray(vertices, dtype=np.float64)
    if verts.ndim != 2 or verts.shape[0] != verts.shape[1] + 1:
        raise ValueError(
            f"A simplex in {verts.shape[-1]}-D needs {verts.shape[-1] + 1} vertices, got array of shape {verts.shape}."
        )
    return verts


def barycentric_coordinates(
    vertices: npt.ArrayLike,
    point: npt.ArrayLike,
    tol: float = DEFAULT_DEGENERACY_TOLERANCE
) -> npt.NDArray[np.float64]:
    """
    Express a point in barycentric coordinates of a simplex.

    Points outside the simplex are allowed and produce coordinates outside
    [0, 1], which is what the refiner uses to extrapolate.

    Args:
        vertices: (d + 1, d) array of vertices.
        point: (d, ) point.
        tol: Relative pivot tolerance used to detect zero volume.

    Raises:
        ValueError: If the shapes do not describe a d-simplex and a d-point.
        DegenerateSimplexError: If the vertices are affinely dependent.

    Returns:
        (d + 1, ) coordinates summing to 1.
    """
    verts = _as_simplex(vertices)
    pt = np.ascontiguousarray(point, dtype=np.float64)
    if pt.shape != (verts.shape[1],):
        raise ValueError(f"Point of shape {pt.shape} does not match a {verts.shape[1]}-D simplex.")

    coords, ok = _solve_barycentric(verts, pt, tol)
    if not ok:
        raise DegenerateSimplexError("Simplex vertices are affinely dependent (zero volume).")
    return coords


def is_inside(barycentric: npt.ArrayLike, eps: float = DEFAULT_INSIDE_TOLERANCE) -> bool:
    """Closed containment test: every coordinate in [-eps, 1 + eps]."""
    bary = np.asarray(barycentric, dtype=np.float64)
    return bool(np.all(bary >= -eps) and np.all(bary <= 1.0 + eps))


def interpolate(barycentric: npt.ArrayLike, vertices: npt.ArrayLike) -> npt.NDArray[np.float64]:
    """Apply barycentric weights to a set of vertices (Σ βᵢ vᵢ)."""
    return np.asarray(barycentric, dtype=np.float64) @ np.asarray(vertices, dtype=np.float64)


def simplex_volume(vertices: npt.ArrayLike) -> float:
    """
    Unsigned volume of a d-simplex, |det(V[:d] - V[d])| / d!.
    """
    verts = _as_simplex(vertices)
    dim = verts.shape[1]
    edges = verts[:-1] - verts[-1]
    return float(abs(np.linalg.det(edges)) / factorial(dim))


def first_enclosing_simplex(
    coords: npt.ArrayLike,
    simplices: npt.ArrayLike,
    target: npt.ArrayLike,
    eps: float = DEFAULT_INSIDE_TOLERANCE,
    tol: float = DEFAULT_DEGENERACY_TOLERANCE
) -> Optional[tuple[int, npt.NDArray[np.float64]]]:
    """
    Find the first simplex (by row) whose `coords` image contains `target`.

    Returns:
        (row, barycentric) or None.
    """
    pts = np.ascontiguousarray(coords, dtype=np.float64)
    simp = np.ascontiguousarray(simplices, dtype=np.int64)
    tgt = np.ascontiguousarray(target, dtype=np.float64)
    if simp.shape[0] == 0:
        return None

    row, bary = _first_enclosing_simplex(pts, simp, tgt, eps, tol)
    if row < 0:
        return None
    return int(row), bary
