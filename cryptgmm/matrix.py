"""
Dense matrices over Z_p.

``Matrix`` wraps a two-dimensional ``torch.int64`` tensor whose entries are
kept reduced into ``[0, p)``. It is the plaintext container used on both
sides of the protocol: the client's private operand, the server's operand,
the reassembled result and the reference product.
"""

from __future__ import annotations

from typing import Optional, Sequence, Tuple, Union

import torch

from .errors import BoundsError

__all__ = ["Matrix"]


class Matrix:
    """A ``rows x cols`` matrix over Z_p.

    Example:
        >>> gen = torch.Generator().manual_seed(123)
        >>> a = Matrix.random(4, 3, modulus=7, generator=gen, bound=4)
        >>> b = Matrix.identity(3, modulus=7)
        >>> a.matmul(b).equals(a)
        True
    """

    def __init__(self, values: Union[torch.Tensor, Sequence[Sequence[int]]], modulus: int):
        if modulus < 2:
            raise ValueError(f"modulus must be at least 2, got {modulus}")
        data = torch.as_tensor(values, dtype=torch.int64)
        if data.ndim != 2:
            raise ValueError(f"Matrix needs a 2-D tensor, got shape {tuple(data.shape)}")
        self._data = data.remainder(modulus).contiguous()
        self._modulus = int(modulus)

    @classmethod
    def zeros(cls, rows: int, cols: int, modulus: int) -> "Matrix":
        return cls(torch.zeros(rows, cols, dtype=torch.int64), modulus)

    @classmethod
    def identity(cls, size: int, modulus: int) -> "Matrix":
        return cls(torch.eye(size, dtype=torch.int64), modulus)

    @classmethod
    def random(
        cls,
        rows: int,
        cols: int,
        modulus: int,
        generator: torch.Generator,
        bound: Optional[int] = None,
    ) -> "Matrix":
        """Draw entries uniformly from ``[0, bound)`` (``bound`` defaults to ``p``).

        The generator is passed in explicitly so that trials are reproducible
        independently of any global RNG state.
        """
        high = modulus if bound is None else min(bound, modulus)
        values = torch.randint(0, high, (rows, cols), generator=generator, dtype=torch.int64)
        return cls(values, modulus)

    @property
    def rows(self) -> int:
        return self._data.shape[0]

    @property
    def cols(self) -> int:
        return self._data.shape[1]

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.rows, self.cols)

    @property
    def modulus(self) -> int:
        return self._modulus

    @property
    def data(self) -> torch.Tensor:
        """Underlying tensor (shared, callers must not write through it)."""
        return self._data

    def _check_index(self, row: int, col: int) -> None:
        if not (0 <= row < self.rows and 0 <= col < self.cols):
            raise BoundsError(
                f"Index ({row}, {col}) outside {self.rows}x{self.cols} matrix"
            )

    def get(self, row: int, col: int) -> int:
        self._check_index(row, col)
        return int(self._data[row, col])

    def put(self, row: int, col: int, value: int) -> None:
        self._check_index(row, col)
        self._data[row, col] = int(value) % self._modulus

    def __getitem__(self, index: Tuple[int, int]) -> int:
        return self.get(*index)

    def __setitem__(self, index: Tuple[int, int], value: int) -> None:
        self.put(index[0], index[1], value)

    def put_column(self, row_start: int, col: int, values: torch.Tensor) -> None:
        """Write ``values`` into column ``col`` starting at row ``row_start``."""
        count = int(values.numel())
        if not (0 <= col < self.cols and 0 <= row_start and row_start + count <= self.rows):
            raise BoundsError(
                f"Column segment rows [{row_start}:{row_start + count}] x col {col} "
                f"outside {self.rows}x{self.cols} matrix"
            )
        self._data[row_start:row_start + count, col] = values.reshape(-1).to(torch.int64) % self._modulus

    def block(self, row_start: int, row_stop: int, col_start: int, col_stop: int) -> torch.Tensor:
        """Copy of the half-open sub-region ``[row_start, row_stop) x [col_start, col_stop)``."""
        if not (0 <= row_start <= row_stop <= self.rows and 0 <= col_start <= col_stop <= self.cols):
            raise BoundsError(
                f"Block [{row_start}:{row_stop}, {col_start}:{col_stop}] outside "
                f"{self.rows}x{self.cols} matrix"
            )
        return self._data[row_start:row_stop, col_start:col_stop].clone()

    def transpose(self) -> "Matrix":
        return Matrix(self._data.t(), self._modulus)

    @property
    def T(self) -> "Matrix":
        return self.transpose()

    def matmul(self, other: "Matrix") -> "Matrix":
        """Plaintext reference product modulo p."""
        if self._modulus != other._modulus:
            raise ValueError(
                f"Modulus mismatch in matmul: {self._modulus} vs {other._modulus}"
            )
        if self.cols != other.rows:
            raise ValueError(
                f"Shape mismatch in matmul: {self.shape} x {other.shape}"
            )
        # Each partial product is below p^2; reduce after every chunk of the
        # contraction that int64 can hold.
        limit = (2 ** 63 - 1) // max((self._modulus - 1) ** 2, 1)
        if limit == 0:
            raise ValueError(f"modulus {self._modulus} is too large for int64 products")
        product = torch.zeros(self.rows, other.cols, dtype=torch.int64)
        for start in range(0, self.cols, limit):
            stop = min(start + limit, self.cols)
            part = torch.matmul(self._data[:, start:stop], other._data[start:stop])
            product = (product + part % self._modulus) % self._modulus
        return Matrix(product, self._modulus)

    def __matmul__(self, other: "Matrix") -> "Matrix":
        return self.matmul(other)

    def equals(self, other: "Matrix", modulus: Optional[int] = None) -> bool:
        """Equality of shapes and of every entry under ``modulus`` (default p)."""
        if self.shape != other.shape:
            return False
        mod = self._modulus if modulus is None else modulus
        return bool(torch.equal(self._data.remainder(mod), other._data.remainder(mod)))

    def mismatches(self, other: "Matrix") -> int:
        """Number of entries that differ from ``other`` (shapes must agree)."""
        if self.shape != other.shape:
            raise ValueError(f"Shape mismatch: {self.shape} vs {other.shape}")
        return int((self._data != other._data.remainder(self._modulus)).sum())

    def clone(self) -> "Matrix":
        return Matrix(self._data.clone(), self._modulus)

    def tolist(self):
        return self._data.tolist()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Matrix):
            return NotImplemented
        return self._modulus == other._modulus and self.equals(other)

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"Matrix(rows={self.rows}, cols={self.cols}, modulus={self._modulus})"
