"""
Parameter-only extraction tables and inner-product recovery.

Every slot holds an element of ``Z_p[X] / F_lane(X)`` with ``F_lane`` monic
of degree ``d``. The protocol reads one linear functional of each slot
after decryption: the coefficient of ``X^(d-1)``. Together with the ring
product it defines, per slot, the bilinear pairing

    <a, b>_lane = coef_{d-1}( a(X) * b(X) mod F_lane(X) )

whose Gram matrix on the monomial basis is

    G_lane[k][j] = coef_{d-1}( X^(k+j) mod F_lane ).

``G_lane[k][j]`` vanishes for ``k + j < d - 1`` and is 1 on the
anti-diagonal, so ``G_lane b = v`` always has a unique solution found by
forward substitution. The server uses it to pre-align B's columns and the
client uses the readout weights to recover inner products. Both depend on
the scheme parameters only and are computed once per session.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache

import torch

from .config import SchemeParams
from .errors import BoundsError
from .matrix import Matrix
from .ring import monomial_residues

__all__ = [
    "ExtractionTable",
    "precompute_extraction_table",
    "extract_inner_products",
    "fill_result",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExtractionTable:
    """Readout rule and pairing for one set of scheme parameters.

    Attributes:
        params: Parameters the table was built for.
        weights: ``(d,)`` readout weights applied to every decrypted slot.
        gram: ``(l, d, d)`` Gram matrices of the per-slot pairing.
    """

    params: SchemeParams
    weights: torch.Tensor
    gram: torch.Tensor

    @property
    def slots(self) -> int:
        return self.params.slots

    @property
    def degree(self) -> int:
        return self.params.degree

    def align(self, columns: torch.Tensor) -> torch.Tensor:
        """Solve ``G_lane b = v`` for every lane and every row of ``columns``.

        Args:
            columns: ``(n, d)`` tensor, one contraction segment per row.

        Returns:
            ``(n, l, d)`` tensor ``b`` with ``<X^k, b[i, lane]>_lane == columns[i, k]``.
        """
        p = self.params.modulus
        d = self.degree
        if columns.ndim != 2 or columns.shape[1] != d:
            raise ValueError(
                f"Expected an (n, {d}) tensor of contraction segments, got {tuple(columns.shape)}"
            )
        v = columns.to(torch.int64) % p
        n = v.shape[0]
        solved = torch.zeros(n, self.slots, d, dtype=torch.int64)
        for k in range(d):
            j = d - 1 - k
            acc = v[:, k].unsqueeze(1).expand(n, self.slots)
            if k > 0:
                tail = (solved[:, :, j + 1:] * self.gram[:, k, j + 1:].unsqueeze(0)).sum(-1)
                acc = acc - tail
            solved[:, :, j] = acc % p
        return solved

    def pair(self, a: torch.Tensor, b: torch.Tensor) -> torch.Tensor:
        """Per-slot pairing of two ``(l, d)`` slot matrices."""
        p = self.params.modulus
        left = (a % p).unsqueeze(2) * self.gram % p
        per_row = (left * (b % p).unsqueeze(1)).sum(-1) % p
        return per_row.sum(-1) % p


@lru_cache(maxsize=16)
def precompute_extraction_table(params: SchemeParams) -> ExtractionTable:
    """Build (or fetch the cached) extraction table for ``params``."""
    p = params.modulus
    d = params.degree
    residues = monomial_residues(params.moduli_tensor() % p, 2 * d - 1, p)
    idx = torch.arange(d)
    gram = residues[:, idx.unsqueeze(1) + idx.unsqueeze(0), d - 1]
    weights = torch.zeros(d, dtype=torch.int64)
    weights[d - 1] = 1
    logger.debug("Precomputed extraction table for %s", params)
    return ExtractionTable(params=params, weights=weights, gram=gram)


def extract_inner_products(slots: torch.Tensor, table: ExtractionTable) -> torch.Tensor:
    """Recover the ``l`` scalars packed in one decrypted ciphertext.

    Args:
        slots: ``(l, d)`` decrypted slot matrix.
        table: The session's extraction table.

    Returns:
        ``(l,)`` int64 tensor; entry ``lane`` belongs to row
        ``row_tile * l + lane`` of the result.
    """
    expected = (table.slots, table.degree)
    if tuple(slots.shape) != expected:
        raise ValueError(
            f"Decrypted slots have shape {tuple(slots.shape)}, expected {expected}"
        )
    p = table.params.modulus
    return (slots.to(torch.int64) % p * table.weights).sum(-1) % p


def fill_result(
    result: Matrix,
    row_tile: int,
    column: int,
    values: torch.Tensor,
    params: SchemeParams,
) -> int:
    """Write extracted lanes into ``result`` and return how many were written.

    Lane ``lane`` goes to ``(row_tile * l + lane, column)``; lanes past the
    last row of ``result`` are zero padding and are dropped.

    Raises:
        BoundsError: If ``column`` or ``row_tile`` lies outside ``result``, or
            ``values`` carries more than ``l`` lanes.
    """
    lanes = int(values.numel())
    if lanes > params.slots:
        raise BoundsError(f"Got {lanes} lanes for {params.slots} slots")
    row_start = row_tile * params.slots
    if row_tile < 0 or row_start >= result.rows:
        raise BoundsError(
            f"Row tile {row_tile} outside a result with {result.rows} rows"
        )
    if not 0 <= column < result.cols:
        raise BoundsError(f"Column {column} outside a result with {result.cols} columns")
    count = min(lanes, result.rows - row_start)
    result.put_column(row_start, column, values.reshape(-1)[:count])
    return count
