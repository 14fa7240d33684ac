"""
Configuration & Tuning Constants
================================
This module serves as the central registry for the matching engine's tunable
parameters.

Why is this file needed?
------------------------
1. Abstraction: It prevents magic numbers (thresholds, tolerances, the
   refinement scaling constant) scattered throughout the code.
2. Persistence: The settings travel with a saved shade bank, so a later session
   can resume with exactly the parameters that produced it.

Exports:
    MatchingSettings: Dataclass with every parameter the controller accepts.
    EIGHT_BIT_LEVELS (int): Quantisation used by 8-bit printer drivers.
"""
from __future__ import annotations

from dataclasses import dataclass, asdict, fields
from typing import Any, Dict, Optional, Tuple

# Global Constants
EIGHT_BIT_LEVELS: int = 255
UNIT_DOMAIN: Tuple[float, float] = (0.0, 1.0)

DEFAULT_THRESHOLD: float = 1.0
DEFAULT_MAX_ITERATIONS: int = 8
DEFAULT_MAX_NEIGHBORS: int = 10
DEFAULT_SCALING_CONSTANT: float = 2.0


@dataclass
class MatchingSettings:
    """
    Parameters of one matching session.

    Attributes:
        threshold: Largest colour difference accepted as a match.
        max_iterations: Number of measurement rounds before the session stops.
        max_neighbors: Largest neighbourhood examined by the enclosing search.
        scaling_constant: Size of the refinement prototype relative to the
            current error. Larger values bracket the target more reliably under
            measurement noise but converge more slowly.
        domain: Valid range of every input channel.
        quantization_levels: Number of steps per channel candidates are rounded
            to before measurement (255 for 8-bit devices), or None.
        use_tessellation: Locate targets with a Delaunay tessellation of the
            inputs; when False the enclosing search is used instead.
        inside_tolerance: Slack on the barycentric [0, 1] containment test.
        degeneracy_tolerance: Relative pivot size below which a simplex is
            treated as having zero volume.
        coincidence_tolerance: Colour difference under which the nearest sample
            is accepted as the target itself.
        max_degenerate_retries: Extra neighbours requested before a target's
            round is skipped.
    """
    threshold: float = DEFAULT_THRESHOLD
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    max_neighbors: int = DEFAULT_MAX_NEIGHBORS
    scaling_constant: float = DEFAULT_SCALING_CONSTANT
    domain: Tuple[float, float] = UNIT_DOMAIN
    quantization_levels: Optional[int] = None
    use_tessellation: bool = True
    inside_tolerance: float = 1e-9
    degeneracy_tolerance: float = 1e-12
    coincidence_tolerance: float = 1e-9
    max_degenerate_retries: int = 2

    def __post_init__(self) -> None:
        self.domain = (float(self.domain[0]), float(self.domain[1]))

        if self.threshold < 0.0:
            raise ValueError(f"threshold must be non-negative, got {self.threshold}.")
        if self.max_iterations < 0:
            raise ValueError(f"max_iterations must be non-negative, got {self.max_iterations}.")
        if self.max_neighbors < 1:
            raise ValueError(f"max_neighbors must be positive, got {self.max_neighbors}.")
        if self.scaling_constant <= 0.0:
            raise ValueError(f"scaling_constant must be positive, got {self.scaling_constant}.")
        if self.domain[0] >= self.domain[1]:
            raise ValueError(f"domain must be an increasing interval, got {self.domain}.")
        if self.quantization_levels is not None and self.quantization_levels < 1:
            raise ValueError(f"quantization_levels must be positive, got {self.quantization_levels}.")
        if self.max_degenerate_retries < 0:
            raise ValueError(f"max_degenerate_retries must be non-negative, got {self.max_degenerate_retries}.")

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["domain"] = list(self.domain)
        return data

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> MatchingSettings:
        """Build settings from a dict, ignoring keys written by other versions."""
        known = {f.name for f in fields(MatchingSettings)}
        kwargs = {key: value for key, value in data.items() if key in known}
        if "domain" in kwargs:
            kwargs["domain"] = tuple(kwargs["domain"])
        return MatchingSettings(**kwargs)
