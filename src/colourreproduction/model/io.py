"""
Input/Output Manager (HDF5 / CSV)
Handles saving and loading a shade bank, optionally with the settings that
produced it.
"""
import csv
import json
import logging
from importlib.metadata import version, PackageNotFoundError
from pathlib import Path
from typing import Optional, Tuple, Union

import h5py
import numpy as np

from colourreproduction.config import MatchingSettings
from colourreproduction.errors import SamplePoolError
from colourreproduction.model.samples import SamplePool

# Get module logger
logger = logging.getLogger(__name__)

try:
    APP_VERSION = version("colourreproduction")
except PackageNotFoundError:
    APP_VERSION = "0.0.0-dev"

PathLike = Union[str, Path]


class ShadeBankIO:

    @staticmethod
    def save_hdf5(pool: SamplePool, filepath: PathLike, settings: Optional[MatchingSettings] = None) -> None:
        """
        Write the pool to an HDF5 file.

        Layout: datasets `inputs` and `images` (n, d); attributes `version`
        (pool version), `app_version` and, if given, `settings_json`.
        """
        logger.info(f"Saving shade bank ({len(pool)} samples) to: {filepath}")
        try:
            with h5py.File(filepath, "w") as f:
                f.attrs["app_version"] = APP_VERSION
                f.attrs["version"] = pool.version
                f.create_dataset("inputs", data=np.asarray(pool.inputs), compression="gzip")
                f.create_dataset("images", data=np.asarray(pool.images), compression="gzip")
                if settings is not None:
                    f.attrs["settings_json"] = json.dumps(settings.to_dict())
            logger.info(f"Shade bank saved to: {filepath}")

        except Exception as e:
            logger.exception(f"Failed to save shade bank: {e}")
            raise e

    @staticmethod
    def load_hdf5(filepath: PathLike) -> Tuple[SamplePool, Optional[MatchingSettings]]:
        """
        Read a pool (and its settings, if stored) written by `save_hdf5`.

        Raises:
            SamplePoolError: If the file is not HDF5 or lacks the sample datasets.
        """
        logger.info(f"Loading shade bank from: {filepath}")
        if not Path(filepath).exists() or not h5py.is_hdf5(filepath):
            msg = f"File '{filepath}' is not a valid HDF5 file."
            logger.error(msg)
            raise SamplePoolError(msg)

        try:
            with h5py.File(filepath, "r") as f:
                if "inputs" not in f or "images" not in f:
                    raise SamplePoolError(f"File '{filepath}' does not contain a shade bank.")

                file_version = f.attrs.get("app_version", "unknown")
                if file_version != APP_VERSION:
                    logger.debug(f"File written by version {file_version}, running {APP_VERSION}.")

                inputs = np.array(f["inputs"], dtype=np.float64)
                images = np.array(f["images"], dtype=np.float64)

                settings = None
                if "settings_json" in f.attrs:
                    settings = MatchingSettings.from_dict(json.loads(f.attrs["settings_json"]))

            pool = SamplePool.from_arrays(inputs, images)
            logger.info(f"Loaded {len(pool)} samples.")
            return pool, settings

        except Exception as e:
            logger.exception(f"Failed to load shade bank: {e}")
            raise e

    @staticmethod
    def write_csv(pool: SamplePool, filepath: PathLike) -> None:
        """Write `[input..., image...]` rows with an `in_i` / `out_i` header."""
        if pool.dimension is None:
            raise SamplePoolError("Cannot write a pool without samples.")

        dim = pool.dimension
        header = [f"in_{i}" for i in range(dim)] + [f"out_{i}" for i in range(dim)]
        with open(filepath, "w", newline="", encoding="utf-8") as fh:
            writer = csv.writer(fh)
            writer.writerow(header)
            for row in np.hstack((pool.inputs, pool.images)):
                writer.writerow([repr(float(v)) for v in row])
        logger.info(f"Wrote {len(pool)} samples to: {filepath}")

    @staticmethod
    def read_csv(filepath: PathLike, dimension: int = 3) -> SamplePool:
        """
        Read `[input..., image...]` rows. A non-numeric first row is taken as a header.

        Raises:
            SamplePoolError: If a row does not have 2 * dimension numeric values.
        """
        rows = []
        with open(filepath, "r", newline="", encoding="utf-8") as fh:
            reader = csv.reader(fh)
            for line_no, row in enumerate(reader, start=1):
                if not row:
                    continue
                try:
                    values = [float(v) for v in row]
                except ValueError:
                    if line_no == 1:
                        continue
                    msg = f"{filepath}:{line_no}: non-numeric value in {row}."
                    logger.error(msg)
                    raise SamplePoolError(msg)
                if len(values) != 2 * dimension:
                    msg = f"{filepath}:{line_no}: expected {2 * dimension} columns, got {len(values)}."
                    logger.error(msg)
                    raise SamplePoolError(msg)
                rows.append(values)

        if not rows:
            return SamplePool(dimension=dimension)

        table = np.array(rows, dtype=np.float64)
        logger.info(f"Read {table.shape[0]} samples from: {filepath}")
        return SamplePool.from_arrays(table[:, :dimension], table[:, dimension:])
