import numpy as np
import pytest

from colourreproduction.analysis.sampling import make_input_grid
from colourreproduction.model.samples import SamplePool


class MockDevice:
    """Records every batch it is asked to measure."""

    def __init__(self, transfer):
        self.transfer = transfer
        self.batches = []

    @property
    def calls(self):
        return len(self.batches)

    @property
    def measured(self):
        return sum(batch.shape[0] for batch in self.batches)

    def __call__(self, batch):
        batch = np.array(batch, dtype=np.float64)
        self.batches.append(batch)
        return self.transfer(batch)


def affine(inputs):
    return 10.0 * np.asarray(inputs, dtype=np.float64)


def quadratic(inputs):
    return 10.0 * np.asarray(inputs, dtype=np.float64) ** 2


@pytest.fixture
def unit_inputs():
    return np.array([
        [0.0, 0.0, 0.0],
        [1.0, 0.0, 0.0],
        [0.0, 1.0, 0.0],
        [0.0, 0.0, 1.0],
    ])


@pytest.fixture
def unit_pool(unit_inputs):
    return SamplePool.from_arrays(unit_inputs, affine(unit_inputs))


@pytest.fixture
def affine_device():
    return MockDevice(affine)


@pytest.fixture
def quadratic_device():
    return MockDevice(quadratic)


@pytest.fixture
def grid_inputs():
    return make_input_grid(3, levels=None)


@pytest.fixture
def affine_grid_pool(grid_inputs):
    return SamplePool.from_arrays(grid_inputs, affine(grid_inputs))


@pytest.fixture
def quadratic_grid_pool(grid_inputs):
    return SamplePool.from_arrays(grid_inputs, quadratic(grid_inputs))
