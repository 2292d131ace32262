"""
Tiling of matrices into slot/degree aligned blocks.

There is exactly one partition convention: row-major with the SIMD axis on
rows. A tile covers ``l`` consecutive rows (one per slot) and ``d``
consecutive columns (one per coefficient of the slot's ring element).
An operand that needs the opposite mapping is transposed by the caller
before it is partitioned; the server does this with B so that B's columns
become the partitioned rows.
"""

from __future__ import annotations

from typing import Iterator, NamedTuple

from ..config import SchemeParams, round_div
from ..errors import BoundsError

__all__ = ["TileId", "TileSpan", "TileGrid", "BlockPartitioner"]


class TileId(NamedTuple):
    """Coordinates of a tile inside a partition grid."""

    row_tile: int
    col_tile: int


class TileSpan(NamedTuple):
    """Half-open index ranges covered by a tile."""

    row_start: int
    row_stop: int
    col_start: int
    col_stop: int

    @property
    def height(self) -> int:
        return self.row_stop - self.row_start

    @property
    def width(self) -> int:
        return self.col_stop - self.col_start


class TileGrid(NamedTuple):
    """Partition of a ``rows x cols`` matrix into ``row_tiles x col_tiles`` tiles."""

    rows: int
    cols: int
    row_tiles: int
    col_tiles: int

    @property
    def size(self) -> int:
        return self.row_tiles * self.col_tiles


class BlockPartitioner:
    """Maps matrix extents onto a grid of ``l x d`` tiles.

    Edge tiles are shorter than ``l`` rows or ``d`` columns; spans never
    extend past the matrix.

    Example:
        >>> part = BlockPartitioner(SchemeParams(slots=4, degree=2, modulus=7))
        >>> grid = part.grid(5, 5)
        >>> (grid.row_tiles, grid.col_tiles)
        (2, 3)
        >>> part.span(grid, TileId(1, 2))
        TileSpan(row_start=4, row_stop=5, col_start=4, col_stop=5)
    """

    def __init__(self, params: SchemeParams):
        self.params = params

    @property
    def slots(self) -> int:
        return self.params.slots

    @property
    def degree(self) -> int:
        return self.params.degree

    def grid(self, rows: int, cols: int) -> TileGrid:
        if rows <= 0 or cols <= 0:
            raise ValueError(f"Cannot partition an empty {rows}x{cols} matrix")
        return TileGrid(
            rows=rows,
            cols=cols,
            row_tiles=round_div(rows, self.slots),
            col_tiles=round_div(cols, self.degree),
        )

    def span(self, grid: TileGrid, tile: TileId) -> TileSpan:
        x, y = tile
        if not (0 <= x < grid.row_tiles and 0 <= y < grid.col_tiles):
            raise BoundsError(
                f"Tile {tuple(tile)} outside {grid.row_tiles}x{grid.col_tiles} grid"
            )
        row_start = x * self.slots
        col_start = y * self.degree
        return TileSpan(
            row_start=row_start,
            row_stop=min(row_start + self.slots, grid.rows),
            col_start=col_start,
            col_stop=min(col_start + self.degree, grid.cols),
        )

    def tiles(self, grid: TileGrid) -> Iterator[TileId]:
        """All tile ids in row-tile-major order."""
        for x in range(grid.row_tiles):
            for y in range(grid.col_tiles):
                yield TileId(x, y)

    def __repr__(self) -> str:
        return f"BlockPartitioner(l={self.slots}, d={self.degree})"
