"""
Tiling and packing of matrices into slot-batched plaintexts.

Classes:
    BlockPartitioner: Split a matrix into ``l x d`` tiles.
    DoublePacker: Pack a tile of the client's matrix (rows -> slots,
        columns -> coefficients) and unpack it again.
    DiagonalEncoder: Pre-align the server's matrix per output column.
"""

from .partition import BlockPartitioner, TileGrid, TileId, TileSpan
from .packing import DoublePacker, PackedTile
from .diagonal import DiagonalEncoder, DiagonalTable

__all__ = [
    "BlockPartitioner",
    "TileGrid",
    "TileId",
    "TileSpan",
    "DoublePacker",
    "PackedTile",
    "DiagonalEncoder",
    "DiagonalTable",
]
