"""
Double packing of matrix tiles into slot/coefficient layouts.

This module packs one ``l x d`` tile of a matrix into a single plaintext:
the tile's rows go to the ``l`` SIMD slots and its columns go to the ``d``
coefficients of the ring element held by each slot. One ciphertext then
carries ``l * d`` matrix entries.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

import torch

from ..config import SchemeParams
from ..errors import BoundsError
from ..matrix import Matrix
from .partition import BlockPartitioner, TileGrid, TileId, TileSpan


@dataclass(frozen=True)
class PackedTile:
    """One tile in double-packed form.

    ``planes[k]`` holds, for every slot ``lane``, the entry at row
    ``span.row_start + lane`` and column ``span.col_start + k``. There is
    one plane per column inside the tile (at most ``d``); lanes past the
    last matrix row are zero.
    """

    tile: TileId
    span: TileSpan
    planes: torch.Tensor

    @property
    def num_planes(self) -> int:
        return self.planes.shape[0]

    def to_slots(self, degree: int) -> torch.Tensor:
        """Slot matrix ``(l, d)``: coefficient ``k`` of slot ``lane`` is ``planes[k][lane]``."""
        if self.num_planes > degree:
            raise ValueError(
                f"Tile has {self.num_planes} planes, exceeds degree={degree}"
            )
        slots = torch.zeros(self.planes.shape[1], degree, dtype=torch.int64)
        slots[:, : self.num_planes] = self.planes.t()
        return slots


class DoublePacker:
    """Packs matrix tiles into ``(l, d)`` slot matrices and back.

    Packing is a pure function of the tile contents; it performs no
    cryptographic operation. The slot matrix is what the provider's
    ``encode_slots`` consumes.

    Example:
        >>> params = SchemeParams(slots=4, degree=2, modulus=7)
        >>> packer = DoublePacker(params)
        >>> m = Matrix(torch.arange(16).reshape(4, 4), modulus=7)
        >>> grid = packer.partitioner.grid(m.rows, m.cols)
        >>> packed = packer.pack(m, TileId(0, 1), grid)
        >>> packer.encode(packed)[0].tolist()   # row 0, columns 2 and 3
        [2, 3]
    """

    def __init__(self, params: SchemeParams, partitioner: Optional[BlockPartitioner] = None):
        self.params = params
        self.partitioner = partitioner or BlockPartitioner(params)

    @property
    def slots(self) -> int:
        return self.params.slots

    @property
    def degree(self) -> int:
        return self.params.degree

    def pack(self, matrix: Matrix, tile: TileId, grid: Optional[TileGrid] = None) -> PackedTile:
        """Pack the tile ``tile`` of ``matrix``.

        Raises:
            ValueError: If ``grid`` does not describe ``matrix``.
            BoundsError: If ``tile`` is outside the grid.
        """
        if grid is None:
            grid = self.partitioner.grid(matrix.rows, matrix.cols)
        elif (grid.rows, grid.cols) != matrix.shape:
            raise ValueError(
                f"Grid for a {grid.rows}x{grid.cols} matrix used with a "
                f"{matrix.rows}x{matrix.cols} matrix"
            )
        span = self.partitioner.span(grid, tile)
        values = matrix.block(*span)

        planes = torch.zeros(span.width, self.slots, dtype=torch.int64)
        planes[:, : span.height] = values.t()
        return PackedTile(tile=tile, span=span, planes=planes)

    def encode(self, packed: PackedTile) -> torch.Tensor:
        return packed.to_slots(self.degree)

    def pack_slots(self, matrix: Matrix, tile: TileId, grid: Optional[TileGrid] = None) -> torch.Tensor:
        return self.encode(self.pack(matrix, tile, grid))

    def unpack(self, slots: torch.Tensor, span: TileSpan) -> torch.Tensor:
        """Recover the ``height x width`` tile values from a slot matrix.

        Raises:
            ValueError: If ``slots`` is not an ``(l, d)`` matrix.
            BoundsError: If ``span`` does not fit in one tile.
        """
        expected = (self.slots, self.degree)
        if tuple(slots.shape) != expected:
            raise ValueError(
                f"Slot matrix has shape {tuple(slots.shape)}, expected {expected}"
            )
        if span.height > self.slots or span.width > self.degree or span.height < 0 or span.width < 0:
            raise BoundsError(
                f"Span {tuple(span)} does not fit a {self.slots}x{self.degree} tile"
            )
        return slots[: span.height, : span.width].to(torch.int64).clone()

    def pack_matrix(self, matrix: Matrix) -> Tuple[TileGrid, List[PackedTile]]:
        """Pack every tile of ``matrix`` in row-tile-major order."""
        grid = self.partitioner.grid(matrix.rows, matrix.cols)
        return grid, [self.pack(matrix, tile, grid) for tile in self.partitioner.tiles(grid)]

    def unpack_matrix(
        self,
        grid: TileGrid,
        slot_tiles: Iterable[torch.Tensor],
        modulus: int,
    ) -> Matrix:
        """Reassemble a matrix from per-tile slot matrices in row-tile-major order."""
        out = torch.zeros(grid.rows, grid.cols, dtype=torch.int64)
        tiles = list(self.partitioner.tiles(grid))
        slot_list = list(slot_tiles)
        if len(slot_list) != len(tiles):
            raise ValueError(
                f"Expected {len(tiles)} tiles for a {grid.row_tiles}x{grid.col_tiles} "
                f"grid, got {len(slot_list)}"
            )
        for tile, slots in zip(tiles, slot_list):
            span = self.partitioner.span(grid, tile)
            out[span.row_start:span.row_stop, span.col_start:span.col_stop] = self.unpack(slots, span)
        return Matrix(out, modulus)

    def __repr__(self) -> str:
        return f"DoublePacker(slots={self.slots}, degree={self.degree})"
