"""
Arithmetic in the slot rings ``Z_p[X] / F_lane(X)``.

Slot matrices are ``(l, d)`` int64 tensors; row ``lane`` holds the ``d``
coefficients (lowest first) of the element in slot ``lane``. ``moduli``
holds the ``d`` low coefficients of each monic ``F_lane``.
"""

from __future__ import annotations

import torch

__all__ = ["monomial_residues", "reduction_table", "ring_multiply"]


def monomial_residues(moduli: torch.Tensor, count: int, p: int) -> torch.Tensor:
    """``X^m mod F_lane`` for ``m in [0, count)`` as an ``(l, count, d)`` tensor."""
    lanes, degree = moduli.shape
    moduli = moduli.to(torch.int64) % p
    residues = torch.zeros(lanes, count, degree, dtype=torch.int64)
    current = torch.zeros(lanes, degree, dtype=torch.int64)
    current[:, 0] = 1
    for m in range(count):
        residues[:, m] = current
        top = current[:, degree - 1].clone()
        shifted = torch.zeros_like(current)
        shifted[:, 1:] = current[:, :-1]
        # X^d == -(low coefficients of F) in the quotient ring
        current = (shifted - top.unsqueeze(1) * moduli) % p
    return residues


def reduction_table(moduli: torch.Tensor, p: int) -> torch.Tensor:
    """Residues of ``X^d .. X^(2d-2)``, shape ``(l, d-1, d)``."""
    degree = moduli.shape[1]
    return monomial_residues(moduli, 2 * degree - 1, p)[:, degree:]


def ring_multiply(a: torch.Tensor, b: torch.Tensor, reduction: torch.Tensor, p: int) -> torch.Tensor:
    """Slot-wise product ``a * b mod (F_lane, p)`` of two ``(l, d)`` slot matrices."""
    lanes, degree = a.shape
    a = a.to(torch.int64) % p
    b = b.to(torch.int64) % p
    outer = a.unsqueeze(2) * b.unsqueeze(1)
    idx = torch.arange(degree)
    target = (idx.unsqueeze(1) + idx.unsqueeze(0)).reshape(-1)
    full = torch.zeros(lanes, 2 * degree - 1, dtype=torch.int64)
    full.index_add_(1, target, outer.reshape(lanes, -1))
    full %= p
    low = full[:, :degree]
    if degree == 1:
        return low % p
    high = full[:, degree:]
    return (low + (high.unsqueeze(2) * reduction).sum(dim=1)) % p
