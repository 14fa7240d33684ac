"""
Error Taxonomy
==============
Exceptions and warnings raised by the matching engine.

Only malformed global inputs (empty shade bank, mixed dimensions, a measurement
collaborator returning the wrong shape) escape to the caller. Degenerate
simplices are recovered inside the controller, and a target that cannot be
bracketed is reported through its status, never through an exception.
"""


class ColourReproductionError(Exception):
    """Base class for all errors raised by the package."""


class DegenerateInputError(ColourReproductionError, ValueError):
    """The points handed to the tessellator span zero volume."""


class DegenerateSimplexError(ColourReproductionError):
    """A simplex has (numerically) zero volume in the space it is evaluated in."""


class SamplePoolError(ColourReproductionError, ValueError):
    """The shade bank is empty or its vectors have inconsistent dimensions."""


class MeasurementError(ColourReproductionError):
    """The measurement collaborator returned a batch of the wrong shape."""


class OutOfDomainCandidateWarning(UserWarning):
    """A refined candidate input fell outside the device range and was clipped."""
