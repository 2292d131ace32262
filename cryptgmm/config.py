"""
Session parameters and protocol configuration.

``SchemeParams`` mirrors what the HE provider's context fixes for a
session: the number of SIMD slots, the degree of the ring element carried
by each slot, the plaintext modulus and the level budget.
``ProtocolConfig`` describes one benchmark run on top of it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Tuple

import torch

from .errors import ConfigurationError

# Level every returned ciphertext is switched down to before download.
RESULT_LEVEL = 1

# Plaintext space of the reference deployment: m = 8192, p = 70913 gives
# 128 slots of degree 32 (ord_m(p) = 32).
DEFAULT_SLOTS = 128
DEFAULT_DEGREE = 32
DEFAULT_MODULUS = 70913
DEFAULT_LEVEL_BUDGET = 8

# Slot-ring products sum about 2d residue products in int64.
INT64_LIMIT = 2 ** 63


def round_div(a: int, b: int) -> int:
    """Ceiling division for non-negative integers."""
    return (a + b - 1) // b


@dataclass(frozen=True)
class SchemeParams:
    """Parameters fixed by the HE context for one session.

    Attributes:
        slots: Number of SIMD slots ``l`` per plaintext/ciphertext.
        degree: Degree ``d`` of the ring element carried by each slot.
        modulus: Plaintext modulus ``p``.
        level_budget: Levels ``L`` available to a fresh ciphertext.
        slot_moduli: Optional per-slot modulus polynomials. Each entry holds
            the ``d`` low coefficients of a monic degree-``d`` polynomial
            (the leading 1 is implied). Defaults to ``X^d - g_i`` with
            ``g_i = i + 1`` for slot ``i``.
    """

    slots: int = DEFAULT_SLOTS
    degree: int = DEFAULT_DEGREE
    modulus: int = DEFAULT_MODULUS
    level_budget: int = DEFAULT_LEVEL_BUDGET
    slot_moduli: Optional[Tuple[Tuple[int, ...], ...]] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.slots <= 0:
            raise ConfigurationError(f"slots must be positive, got {self.slots}")
        if self.degree <= 0:
            raise ConfigurationError(f"degree must be positive, got {self.degree}")
        if self.modulus < 2:
            raise ConfigurationError(f"modulus must be at least 2, got {self.modulus}")
        if 2 * self.degree * (self.modulus - 1) ** 2 >= INT64_LIMIT:
            raise ConfigurationError(
                f"modulus {self.modulus} is too large for degree {self.degree}: "
                f"slot-ring products would overflow int64"
            )
        if self.level_budget < 1:
            raise ConfigurationError(
                f"level_budget must be at least 1, got {self.level_budget}"
            )
        if self.slot_moduli is not None:
            moduli = tuple(tuple(int(c) % self.modulus for c in poly) for poly in self.slot_moduli)
            if len(moduli) != self.slots:
                raise ConfigurationError(
                    f"Expected {self.slots} slot moduli, got {len(moduli)}"
                )
            for lane, poly in enumerate(moduli):
                if len(poly) != self.degree:
                    raise ConfigurationError(
                        f"Slot modulus {lane} has {len(poly)} coefficients, "
                        f"expected {self.degree} (leading 1 is implied)"
                    )
            object.__setattr__(self, "slot_moduli", moduli)

    @property
    def slot_capacity(self) -> int:
        """Scalars carried by one fully packed plaintext."""
        return self.slots * self.degree

    def moduli_tensor(self) -> torch.Tensor:
        """Low coefficients of every slot modulus as an ``(l, d)`` int64 tensor."""
        if self.slot_moduli is not None:
            return torch.tensor(self.slot_moduli, dtype=torch.int64)
        moduli = torch.zeros(self.slots, self.degree, dtype=torch.int64)
        g = torch.arange(1, self.slots + 1, dtype=torch.int64) % self.modulus
        moduli[:, 0] = (-g) % self.modulus
        return moduli

    def contraction_tiles(self, extent: int) -> int:
        """Number of degree-sized tiles covering a contraction extent."""
        return round_div(extent, self.degree)

    def row_tiles(self, extent: int) -> int:
        """Number of slot-sized tiles covering a row extent."""
        return round_div(extent, self.slots)

    def required_levels(self, contraction: int) -> int:
        """Levels consumed by one output ciphertext.

        One per multiply-accumulate step over the contraction tiles, plus
        the final switch down to ``RESULT_LEVEL``.
        """
        return self.contraction_tiles(contraction) + 1

    @classmethod
    def for_dimensions(cls, contraction: int, margin: int = 0, **kwargs: Any) -> "SchemeParams":
        """Create parameters whose level budget covers a contraction extent.

        Args:
            contraction: Shared dimension ``n2`` of the multiplication.
            margin: Extra levels on top of the required budget.
            **kwargs: Overrides for ``slots``, ``degree``, ``modulus`` and
                ``slot_moduli``. An explicit ``level_budget`` wins.
        """
        degree = kwargs.get("degree", DEFAULT_DEGREE)
        if degree <= 0:
            raise ConfigurationError(f"degree must be positive, got {degree}")
        required = round_div(max(contraction, 1), degree) + 1
        kwargs.setdefault("level_budget", max(required + margin, 1))
        return cls(**kwargs)

    def __str__(self) -> str:
        return (
            f"SchemeParams(l={self.slots}, d={self.degree}, "
            f"p={self.modulus}, L={self.level_budget})"
        )


@dataclass
class ProtocolConfig:
    """Configuration of one benchmark run.

    Attributes:
        rows: Rows ``n1`` of the client matrix A.
        inner: Shared dimension ``n2`` (columns of A, rows of B).
        cols: Columns ``n3`` of the server matrix B.
        trials: Number of full round trips.
        seed: Base seed; trial ``t`` draws its matrices from ``seed + t``.
        value_bound: Matrix entries are drawn uniformly from ``[0, value_bound)``.
        verify: Compare every result against the plaintext reference.
        workers: Thread pool size for packing and evaluation (1 = serial).
        params: Scheme parameters. Derived from ``inner`` when omitted.
    """

    rows: int = 128
    inner: int = 128
    cols: int = 128
    trials: int = 50
    seed: int = 123
    value_bound: int = 4
    verify: bool = True
    workers: int = 1
    params: Optional[SchemeParams] = None

    def __post_init__(self) -> None:
        for name in ("rows", "inner", "cols"):
            value = getattr(self, name)
            if value <= 0:
                raise ConfigurationError(f"{name} must be positive, got {value}")
        if self.trials <= 0:
            raise ConfigurationError(f"trials must be positive, got {self.trials}")
        if self.value_bound <= 0:
            raise ConfigurationError(f"value_bound must be positive, got {self.value_bound}")
        if self.workers <= 0:
            raise ConfigurationError(f"workers must be positive, got {self.workers}")

    @property
    def resolved_params(self) -> SchemeParams:
        if self.params is not None:
            return self.params
        return SchemeParams.for_dimensions(self.inner)

    @property
    def ciphertexts_sent(self) -> int:
        params = self.resolved_params
        return params.row_tiles(self.rows) * params.contraction_tiles(self.inner)

    @property
    def ciphertexts_received(self) -> int:
        return self.resolved_params.row_tiles(self.rows) * self.cols

    def trial_seed(self, trial: int) -> int:
        return self.seed + trial

    def describe(self) -> str:
        params = self.resolved_params
        return (
            f"A {self.rows}x{self.inner}, B {self.inner}x{self.cols}, {params}, "
            f"{self.trials} trial(s), {self.ciphertexts_sent} up / "
            f"{self.ciphertexts_received} down"
        )
