import numpy as np
import pytest

from colourreproduction.analysis.sampling import coverage_errors, fine_grid_around_target, make_input_grid
from colourreproduction.errors import SamplePoolError
from colourreproduction.model.samples import SamplePool


def test_input_grid_layout():
    grid = make_input_grid(3, levels=None)

    assert grid.shape == (27, 3)
    np.testing.assert_allclose(grid[0], [0.0, 0.0, 0.0])
    np.testing.assert_allclose(grid[1], [0.0, 0.0, 0.5])
    np.testing.assert_allclose(grid[9], [0.5, 0.0, 0.0])
    np.testing.assert_allclose(grid[-1], [1.0, 1.0, 1.0])


def test_input_grid_is_quantised():
    grid = make_input_grid(4)
    np.testing.assert_allclose(grid * 255, np.round(grid * 255), atol=1e-9)


def test_input_grid_needs_two_divisions():
    with pytest.raises(ValueError):
        make_input_grid(1)


def test_fine_grid_spans_the_nearest_samples():
    coarse = make_input_grid(5, levels=None)
    pool = SamplePool.from_arrays(coarse, 10.0 * coarse)

    fine = fine_grid_around_target(pool, [5.0, 5.0, 5.0], min_samples=10, grid_points=7)

    assert fine.shape == (343, 3)
    np.testing.assert_allclose(fine.min(axis=0), 0.25, atol=1.0 / 255)
    np.testing.assert_allclose(fine.max(axis=0), 0.75, atol=1.0 / 255)
    assert len(np.unique(fine, axis=0)) == 343


def test_fine_grid_with_small_pool_uses_every_sample(unit_pool):
    fine = fine_grid_around_target(unit_pool, [2.0, 3.0, 1.0], min_samples=10, grid_points=3, levels=None)

    assert fine.shape == (27, 3)
    np.testing.assert_allclose(fine.min(axis=0), 0.0)
    np.testing.assert_allclose(fine.max(axis=0), 1.0)


def test_fine_grid_of_empty_pool_raises():
    with pytest.raises(SamplePoolError):
        fine_grid_around_target(SamplePool(dimension=3), [0.0, 0.0, 0.0])


def test_coverage_errors(unit_pool):
    tests = np.vstack((unit_pool.images, [[-1.0, 0.0, 0.0], [0.0, 13.0, 4.0]]))

    errors = coverage_errors(unit_pool, tests)

    np.testing.assert_allclose(errors, [0.0, 0.0, 0.0, 0.0, 1.0, 5.0])
