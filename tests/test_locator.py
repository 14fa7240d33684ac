import numpy as np
import pytest

from colourreproduction.analysis.locator import SimplexLocator
from colourreproduction.analysis.tessellation import Tessellator


def _locate(pool, target):
    tessellation = Tessellator.build(pool.inputs)
    return SimplexLocator().locate(tessellation, pool.images, target)


def test_locates_target_in_unit_simplex(unit_pool):
    location = _locate(unit_pool, [2.0, 3.0, 1.0])

    assert location is not None
    assert location.simplex_id == 0
    assert sorted(location.vertex_indices) == [0, 1, 2, 3]

    by_vertex = dict(zip(location.vertex_indices, location.barycentric))
    np.testing.assert_allclose([by_vertex[i] for i in range(4)], [0.4, 0.2, 0.3, 0.1], atol=1e-12)
    np.testing.assert_allclose(location.interpolate(unit_pool.inputs), [0.2, 0.3, 0.1], atol=1e-12)


def test_far_target_is_not_found(unit_pool):
    assert _locate(unit_pool, [100.0, 100.0, 100.0]) is None


def test_target_on_face_is_found(unit_pool):
    location = _locate(unit_pool, [0.0, 3.0, 1.0])

    assert location is not None
    by_vertex = dict(zip(location.vertex_indices, location.barycentric))
    assert by_vertex[1] == pytest.approx(0.0, abs=1e-12)
    assert np.all(location.barycentric >= -1e-9)


def test_vertex_round_trip(affine_grid_pool):
    tessellation = Tessellator.build(affine_grid_pool.inputs)
    locator = SimplexLocator()

    for index in (0, 13, 26):
        location = locator.locate(tessellation, affine_grid_pool.images, affine_grid_pool.images[index])
        assert location is not None
        assert sorted(np.round(location.barycentric, 9).tolist()) == [0.0, 0.0, 0.0, 1.0]
        np.testing.assert_allclose(
            location.interpolate(affine_grid_pool.inputs),
            affine_grid_pool.inputs[index],
            atol=1e-12,
        )


def test_interior_points_have_valid_coordinates(affine_grid_pool):
    tessellation = Tessellator.build(affine_grid_pool.inputs)
    locator = SimplexLocator()
    rng = np.random.default_rng(11)

    for target in rng.uniform(0.5, 9.5, size=(25, 3)):
        location = locator.locate(tessellation, affine_grid_pool.images, target)
        assert location is not None
        assert location.barycentric.sum() == pytest.approx(1.0, abs=1e-9)
        assert np.all(location.barycentric >= -1e-9)
        assert np.all(location.barycentric <= 1.0 + 1e-9)
        np.testing.assert_allclose(location.interpolate(affine_grid_pool.images), target, atol=1e-9)


def test_dimension_mismatch_raises(unit_pool):
    tessellation = Tessellator.build(unit_pool.inputs)
    with pytest.raises(ValueError):
        SimplexLocator().locate(tessellation, unit_pool.images, [1.0, 2.0])
