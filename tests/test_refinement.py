import warnings

import numpy as np
import pytest

from colourreproduction.analysis.refinement import AdaptiveSimplexRefiner, error_basis
from colourreproduction.errors import DegenerateSimplexError, OutOfDomainCandidateWarning


def test_refinement_along_x_axis_clips_one_component(unit_inputs):
    refiner = AdaptiveSimplexRefiner(scaling_constant=2.0)
    target = np.array([2.0, 3.0, 1.0])
    estimate = np.array([3.0, 3.0, 1.0])

    with pytest.warns(OutOfDomainCandidateWarning):
        refinement = refiner.refine(unit_inputs, 10.0 * unit_inputs, target, estimate)

    assert refinement.candidates.shape == (3, 3)
    assert refinement.clipped_components == 1
    s3 = np.sqrt(3.0)
    np.testing.assert_allclose(
        refinement.image_vertices,
        [[0.0, 5.0, 1.0], [0.0, 2.0, 1.0 + s3], [0.0, 2.0, 1.0 - s3]],
        atol=1e-12,
    )
    np.testing.assert_allclose(
        refinement.candidates,
        [[0.0, 0.5, 0.1], [0.0, 0.2, (1.0 + s3) / 10.0], [0.0, 0.2, 0.0]],
        atol=1e-12,
    )
    assert np.all((refinement.candidates >= 0.0) & (refinement.candidates <= 1.0))


def test_refinement_inside_domain_does_not_warn(unit_inputs):
    refiner = AdaptiveSimplexRefiner()
    target = np.array([3.0, 3.0, 3.0])

    with warnings.catch_warnings():
        warnings.simplefilter("error")
        refinement = refiner.refine(unit_inputs, 10.0 * unit_inputs, target, target + [0.0, 0.1, 0.05])

    assert refinement.clipped_components == 0
    np.testing.assert_allclose(refinement.barycentric.sum(axis=1), 1.0)
    # Exact under an affine device: the candidates aim straight at the new image vertices
    np.testing.assert_allclose(10.0 * refinement.candidates, refinement.image_vertices, atol=1e-12)


def test_new_vertices_sit_behind_the_target():
    refiner = AdaptiveSimplexRefiner(scaling_constant=2.0)
    target = np.array([50.0, 10.0, -5.0])
    error = np.array([0.3, -0.4, 1.2])

    vertices = refiner.new_image_vertices(target, target + error)
    norm = np.linalg.norm(error)

    np.testing.assert_allclose(vertices.mean(axis=0), target - 2.0 * error, atol=1e-12)
    np.testing.assert_allclose(np.linalg.norm(vertices - target, axis=1), 2.0 * np.sqrt(2.0) * norm)
    # The estimate and the three vertices bracket the target
    offsets = (vertices - target) @ (error / norm)
    np.testing.assert_allclose(offsets, -2.0 * norm)


@pytest.mark.parametrize("error", [[1.0, 2.0, 3.0], [-0.2, 0.7, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, -4.0]])
def test_error_basis_is_orthonormal(error):
    basis = error_basis(error)
    e = np.asarray(error)

    np.testing.assert_allclose(basis.T @ basis, np.eye(3), atol=1e-12)
    np.testing.assert_allclose(basis[:, 2], e / np.linalg.norm(e), atol=1e-12)


def test_error_basis_rejects_bad_input():
    with pytest.raises(ValueError):
        error_basis([0.0, 0.0, 0.0])
    with pytest.raises(ValueError):
        error_basis([1.0, 2.0])


def test_degenerate_image_simplex_raises(unit_inputs):
    flat_images = np.array([
        [0.0, 0.0, 0.0],
        [10.0, 0.0, 0.0],
        [0.0, 10.0, 0.0],
        [10.0, 10.0, 0.0],
    ])
    with pytest.raises(DegenerateSimplexError):
        AdaptiveSimplexRefiner().refine(unit_inputs, flat_images, [2.0, 3.0, 0.0], [3.0, 3.0, 0.0])


def test_refinement_needs_a_tetrahedron():
    with pytest.raises(ValueError):
        AdaptiveSimplexRefiner().refine(np.eye(3), np.eye(3), [0.1, 0.1, 0.1], [0.2, 0.1, 0.1])


def test_scaling_constant_must_be_positive():
    with pytest.raises(ValueError):
        AdaptiveSimplexRefiner(scaling_constant=0.0)
