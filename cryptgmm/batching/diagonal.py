"""
Pre-aligned encoding of the server's operand.

For every output column ``c`` and every contraction tile ``y`` the server
needs one plaintext ``P`` such that multiplying it slot-wise into the
client's ciphertext for tile ``(x, y)`` leaves, in the readout coefficient
of slot ``lane``, the partial inner product

    sum_k A[x*l + lane][y*d + k] * B[y*d + k][c].

B is transposed first so that its columns become the partitioned rows;
column ``c`` then lives in row block ``c // l`` at offset ``c % l``, and
each row block yields ``l`` plaintext variants per contraction tile.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, List, Optional

import torch

from ..config import SchemeParams
from ..errors import BoundsError, ConfigurationError
from ..extraction import ExtractionTable, precompute_extraction_table
from ..matrix import Matrix
from .partition import BlockPartitioner, TileGrid, TileId

if TYPE_CHECKING:
    from ..provider import HEProvider

__all__ = ["DiagonalTable", "DiagonalEncoder"]

logger = logging.getLogger(__name__)


@dataclass
class DiagonalTable:
    """Encoded B: ``variants[col_block][contraction_tile][offset]``.

    Built once per B and reused for every row tile of A.
    """

    params: SchemeParams
    grid: TileGrid
    variants: List[List[List[Any]]]

    @property
    def columns(self) -> int:
        """Columns of B (rows of its transpose)."""
        return self.grid.rows

    @property
    def contraction(self) -> int:
        return self.grid.cols

    @property
    def contraction_tiles(self) -> int:
        return self.grid.col_tiles

    @property
    def col_blocks(self) -> int:
        return self.grid.row_tiles

    def lookup(self, column: int, contraction_tile: int) -> Any:
        """Plaintext for output column ``column`` and contraction tile ``contraction_tile``."""
        if not 0 <= column < self.columns:
            raise BoundsError(f"Column {column} outside B with {self.columns} columns")
        if not 0 <= contraction_tile < self.contraction_tiles:
            raise BoundsError(
                f"Contraction tile {contraction_tile} outside "
                f"[0, {self.contraction_tiles})"
            )
        block, offset = divmod(column, self.params.slots)
        return self.variants[block][contraction_tile][offset]

    def __len__(self) -> int:
        return sum(len(per_tile) for per_block in self.variants for per_tile in per_block)


class DiagonalEncoder:
    """Encodes B into a ``DiagonalTable`` with the session's provider.

    Example:
        >>> encoder = DiagonalEncoder(params, provider)
        >>> diag = encoder.encode(b)
        >>> plain = diag.lookup(column=5, contraction_tile=0)
    """

    def __init__(
        self,
        params: SchemeParams,
        provider: "HEProvider",
        table: Optional[ExtractionTable] = None,
    ):
        self.params = params
        self.provider = provider
        self.table = table or precompute_extraction_table(params)
        self.partitioner = BlockPartitioner(params)

    def encode_tile(self, bt: Matrix, grid: TileGrid, tile: TileId) -> List[Any]:
        """All offset variants for one ``(col_block, contraction_tile)`` tile of Bt."""
        span = self.partitioner.span(grid, tile)
        segment = torch.zeros(span.height, self.params.degree, dtype=torch.int64)
        segment[:, : span.width] = bt.block(*span)
        aligned = self.table.align(segment)
        # The same column in every slot: each lane holds the element aligned
        # for its own slot modulus.
        return [self.provider.encode_slots(aligned[offset]) for offset in range(span.height)]

    def encode(self, b: Matrix) -> DiagonalTable:
        if b.modulus != self.params.modulus:
            raise ConfigurationError(
                f"B is over Z_{b.modulus} but the scheme plaintext modulus is {self.params.modulus}"
            )
        bt = b.transpose()
        grid = self.partitioner.grid(bt.rows, bt.cols)
        variants = [
            [self.encode_tile(bt, grid, TileId(block, y)) for y in range(grid.col_tiles)]
            for block in range(grid.row_tiles)
        ]
        logger.debug(
            "Encoded B (%dx%d) into %d column blocks x %d contraction tiles",
            b.rows,
            b.cols,
            grid.row_tiles,
            grid.col_tiles,
        )
        return DiagonalTable(params=self.params, grid=grid, variants=variants)
