"""
Exception and warning types raised by cryptgmm.

Configuration problems are rejected before any ciphertext is produced;
correctness problems found after decryption are reported as warnings so a
benchmark run is never aborted by them.
"""

from __future__ import annotations

from typing import NamedTuple

__all__ = [
    "ConfigurationError",
    "BoundsError",
    "CorrectnessWarning",
    "CiphertextFault",
]


class ConfigurationError(ValueError):
    """Scheme parameters cannot support the requested multiplication.

    Raised for an insufficient level budget, operands whose contraction
    tile counts disagree, or otherwise malformed parameters.
    """


class BoundsError(IndexError):
    """A tile, lane or matrix index fell outside its declared bounds."""


class CorrectnessWarning(RuntimeWarning):
    """The reconstructed product disagrees with the plaintext reference."""


class CiphertextFault(NamedTuple):
    """A returned ciphertext that failed the provider's well-formedness check."""

    index: int
    row_tile: int
    column: int
    level: int
