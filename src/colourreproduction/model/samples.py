"""
Shade Bank (Sample Pool)
========================
This module defines the measured samples every geometric query is based on.

Why is this file needed?
------------------------
1. Ownership: The pool is an explicit object passed into each component call,
   so there is no hidden process-wide state.
2. Versioning: Every append bumps `version`. Derived artefacts such as the
   tessellation are keyed by it and rebuilt only when stale.
3. Isolation: A round works on a read-only snapshot; new measurements are
   appended only at phase boundaries.

Classes:
    SamplePoint: One measured (input, image) pair.
    PoolSnapshot: Frozen view of the pool at a given version.
    SamplePool: The append-only, versioned shade bank.
"""
from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Iterable, Iterator, Optional, TYPE_CHECKING

import numpy as np

from colourreproduction.errors import SamplePoolError
from colourreproduction.utils import quantize

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)


def _readonly(values: npt.ArrayLike) -> npt.NDArray[np.float64]:
    arr = np.array(values, dtype=np.float64)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class SamplePoint:
    """A device input code and the perceptual coordinates it produced."""
    input: npt.NDArray[np.float64]
    image: npt.NDArray[np.float64]

    def __post_init__(self) -> None:
        input_vec = _readonly(self.input)
        image_vec = _readonly(self.image)
        if input_vec.ndim != 1 or image_vec.ndim != 1:
            raise SamplePoolError("Sample vectors must be one-dimensional.")
        if input_vec.shape != image_vec.shape:
            raise SamplePoolError(
                f"Input and image dimensions differ: {input_vec.shape[0]} vs {image_vec.shape[0]}."
            )
        object.__setattr__(self, "input", input_vec)
        object.__setattr__(self, "image", image_vec)

    @property
    def dimension(self) -> int:
        return int(self.input.shape[0])


@dataclass(frozen=True, eq=False)
class PoolSnapshot:
    """Read-only copy of the pool arrays, tagged with the version they came from."""
    inputs: npt.NDArray[np.float64]
    images: npt.NDArray[np.float64]
    version: int

    def __len__(self) -> int:
        return int(self.inputs.shape[0])

    @property
    def dimension(self) -> int:
        return int(self.inputs.shape[1])


@dataclass(eq=False)
class SamplePool:
    """
    Append-only, versioned collection of measured samples (the shade bank).

    Inputs and images are stored as co-indexed (n, d) arrays. Samples are never
    removed or modified; `consolidated()` returns a new pool instead.
    """
    dimension: Optional[int] = None
    _inputs: npt.NDArray[np.float64] = field(init=False, repr=False)
    _images: npt.NDArray[np.float64] = field(init=False, repr=False)
    version: int = field(init=False, default=0)

    def __post_init__(self) -> None:
        width = self.dimension or 0
        self._inputs = np.empty((0, width), dtype=np.float64)
        self._images = np.empty((0, width), dtype=np.float64)

    @classmethod
    def from_arrays(cls, inputs: npt.ArrayLike, images: npt.ArrayLike) -> SamplePool:
        """Create a pool from co-indexed (n, d) input and image arrays."""
        pool = cls()
        pool.extend(inputs, images)
        return pool

    @classmethod
    def from_samples(cls, samples: Iterable[SamplePoint]) -> SamplePool:
        pool = cls()
        for sample in samples:
            pool.append(sample)
        return pool

    def __len__(self) -> int:
        return int(self._inputs.shape[0])

    def __iter__(self) -> Iterator[SamplePoint]:
        for i in range(len(self)):
            yield self[i]

    def __getitem__(self, index: int) -> SamplePoint:
        return SamplePoint(input=self._inputs[index], image=self._images[index])

    @property
    def inputs(self) -> npt.NDArray[np.float64]:
        """Read-only view of all input vectors, shape (n, d)."""
        view = self._inputs.view()
        view.setflags(write=False)
        return view

    @property
    def images(self) -> npt.NDArray[np.float64]:
        """Read-only view of all image vectors, shape (n, d)."""
        view = self._images.view()
        view.setflags(write=False)
        return view

    def append(self, sample: SamplePoint) -> int:
        """
        Append a single sample.

        Returns:
            The pool index of the new sample.
        """
        indices = self.extend(sample.input[np.newaxis, :], sample.image[np.newaxis, :])
        return int(indices[0])

    def extend(self, inputs: npt.ArrayLike, images: npt.ArrayLike) -> npt.NDArray[np.int64]:
        """
        Append a batch of measured samples.

        Args:
            inputs: (n, d) array of input codes.
            images: (n, d) array of the images they produced, same order.

        Raises:
            SamplePoolError: If shapes are inconsistent with each other or with the pool.

        Returns:
            Pool indices assigned to the new samples.
        """
        new_inputs = np.atleast_2d(np.asarray(inputs, dtype=np.float64))
        new_images = np.atleast_2d(np.asarray(images, dtype=np.float64))

        if new_inputs.shape != new_images.shape:
            raise SamplePoolError(
                f"Input batch {new_inputs.shape} and image batch {new_images.shape} do not match."
            )
        if new_inputs.shape[0] == 0:
            return np.empty(0, dtype=np.int64)

        width = new_inputs.shape[1]
        if self.dimension is None:
            self.dimension = width
            self._inputs = np.empty((0, width), dtype=np.float64)
            self._images = np.empty((0, width), dtype=np.float64)
        elif width != self.dimension:
            raise SamplePoolError(
                f"Pool holds {self.dimension}-dimensional samples, got {width}-dimensional ones."
            )
        if not (np.all(np.isfinite(new_inputs)) and np.all(np.isfinite(new_images))):
            raise SamplePoolError("Samples must contain only finite values.")

        start = len(self)
        self._inputs = np.vstack((self._inputs, new_inputs))
        self._images = np.vstack((self._images, new_images))
        self.version += 1

        logger.debug(f"Appended {new_inputs.shape[0]} samples (pool size {len(self)}, version {self.version}).")
        return np.arange(start, len(self), dtype=np.int64)

    def snapshot(self) -> PoolSnapshot:
        """Copy the current arrays into a frozen snapshot."""
        if len(self) == 0:
            raise SamplePoolError("The sample pool is empty.")
        return PoolSnapshot(
            inputs=_readonly(self._inputs),
            images=_readonly(self._images),
            version=self.version,
        )

    def consolidated(self, levels: Optional[int] = 255) -> SamplePool:
        """
        Merge samples that share the same (quantised) input code.

        Repeated measurements of one code are averaged, which reduces
        instrument noise and removes duplicate vertices that would otherwise
        produce zero-volume simplices.

        Args:
            levels: Quantisation used to decide which codes coincide.

        Returns:
            A new pool sorted by input code, with one sample per distinct code.
        """
        if len(self) == 0:
            return SamplePool(dimension=self.dimension)

        keys = quantize(self._inputs, levels)
        unique_keys, inverse, counts = np.unique(keys, axis=0, return_inverse=True, return_counts=True)
        inverse = inverse.reshape(-1)

        sums = np.zeros((unique_keys.shape[0], self.dimension), dtype=np.float64)
        np.add.at(sums, inverse, self._images)
        averaged = sums / counts[:, np.newaxis]

        n_duplicates = len(self) - unique_keys.shape[0]
        if n_duplicates:
            logger.info(
                f"Consolidated {n_duplicates} duplicate samples "
                f"({int(np.count_nonzero(counts > 1))} repeated codes)."
            )
        return SamplePool.from_arrays(unique_keys, averaged)
