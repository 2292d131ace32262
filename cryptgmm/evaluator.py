"""
Server-side evaluation of the encrypted product.

For every row tile ``x`` of A and every column ``c`` of B the server
multiplies the client's ciphertexts ``A[x][y]`` by the pre-aligned
plaintexts of column ``c``, sums over the contraction tiles ``y`` and
switches the sum down once:

    result[x][c] = ModDown( sum_y A[x][y] * diag(c, y) )

Results are emitted row-tile-major, column-minor; the client recovers
``(x, c)`` from the position alone.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Sequence, Tuple

from .batching.diagonal import DiagonalTable
from .batching.partition import BlockPartitioner, TileId
from .config import RESULT_LEVEL, SchemeParams
from .errors import ConfigurationError
from .provider import EncryptedTile, HEProvider

__all__ = ["EvaluationPlan", "Evaluator"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EvaluationPlan:
    """Validated shape of one encrypted multiplication.

    Attributes:
        rows: Rows ``n1`` of A.
        inner: Shared dimension ``n2``.
        cols: Columns ``n3`` of B.
        row_tiles: ``ceil(n1 / l)``.
        contraction_tiles: ``ceil(n2 / d)``.
        required_levels: Levels one output ciphertext consumes.
    """

    params: SchemeParams
    rows: int
    inner: int
    cols: int
    row_tiles: int
    contraction_tiles: int
    required_levels: int

    @classmethod
    def build(
        cls,
        params: SchemeParams,
        a_shape: Tuple[int, int],
        b_shape: Tuple[int, int],
        check_budget: bool = True,
    ) -> "EvaluationPlan":
        """Validate operand shapes and the level budget.

        Raises:
            ConfigurationError: If the operands cannot be multiplied, their
                contraction tilings disagree, or (with ``check_budget``) the
                level budget cannot cover the multiply-accumulate chain.
        """
        n1, n2 = a_shape
        n2_b, n3 = b_shape
        if n2 != n2_b:
            raise ConfigurationError(
                f"Cannot multiply {n1}x{n2} by {n2_b}x{n3}: inner dimensions differ"
            )

        partitioner = BlockPartitioner(params)
        try:
            grid_a = partitioner.grid(n1, n2)
            grid_bt = partitioner.grid(n3, n2_b)
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc
        if grid_a.col_tiles != grid_bt.col_tiles:
            raise ConfigurationError(
                f"Contraction tile counts disagree: A has {grid_a.col_tiles}, "
                f"B has {grid_bt.col_tiles}"
            )

        required = params.required_levels(n2)
        if check_budget and required > params.level_budget:
            raise ConfigurationError(
                f"Level budget {params.level_budget} is insufficient: "
                f"{grid_a.col_tiles} multiply-accumulate steps plus one modulus "
                f"switch need {required} levels (inner dimension {n2}, degree "
                f"{params.degree})"
            )

        return cls(
            params=params,
            rows=n1,
            inner=n2,
            cols=n3,
            row_tiles=grid_a.row_tiles,
            contraction_tiles=grid_a.col_tiles,
            required_levels=required,
        )

    @property
    def ciphertexts_sent(self) -> int:
        return self.row_tiles * self.contraction_tiles

    @property
    def ciphertexts_received(self) -> int:
        return self.row_tiles * self.cols

    def position(self, index: int) -> Tuple[int, int]:
        """``(row_tile, column)`` of the ``index``-th returned ciphertext."""
        if not 0 <= index < self.ciphertexts_received:
            raise IndexError(
                f"Result index {index} outside [0, {self.ciphertexts_received})"
            )
        return divmod(index, self.cols)


class Evaluator:
    """Runs the multiply-accumulate schedule of an ``EvaluationPlan``.

    The evaluator only ever handles ciphertexts and B's plaintexts; it never
    sees A's values. With ``workers > 1`` the independent ``(x, c)`` chains
    run on a thread pool; each chain owns its accumulator and the emission
    order does not change.
    """

    def __init__(self, provider: HEProvider, plan: EvaluationPlan, workers: int = 1):
        if workers <= 0:
            raise ValueError(f"workers must be positive, got {workers}")
        self.provider = provider
        self.plan = plan
        self.workers = workers

    def _check_inputs(
        self,
        enc_a: Sequence[Sequence[EncryptedTile]],
        diagonal: DiagonalTable,
    ) -> None:
        plan = self.plan
        if len(enc_a) != plan.row_tiles:
            raise ConfigurationError(
                f"Expected {plan.row_tiles} row tiles of A, got {len(enc_a)}"
            )
        for x, row in enumerate(enc_a):
            if len(row) != plan.contraction_tiles:
                raise ConfigurationError(
                    f"Row tile {x} of A has {len(row)} contraction tiles, "
                    f"expected {plan.contraction_tiles}"
                )
        if diagonal.contraction_tiles != plan.contraction_tiles:
            raise ConfigurationError(
                f"Encoded B has {diagonal.contraction_tiles} contraction tiles, "
                f"A has {plan.contraction_tiles}"
            )
        if diagonal.columns != plan.cols:
            raise ConfigurationError(
                f"Encoded B has {diagonal.columns} columns, plan expects {plan.cols}"
            )

    def accumulate(
        self,
        row: Sequence[EncryptedTile],
        diagonal: DiagonalTable,
        row_tile: int,
        column: int,
    ) -> EncryptedTile:
        """One output ciphertext: multiply-accumulate over ``y``, then one mod-down.

        Raises:
            ConfigurationError: If ``row`` holds no contraction tiles.
        """
        if not row:
            raise ConfigurationError(
                f"Row tile {row_tile} of A has no contraction tiles to accumulate"
            )
        out_tile = TileId(row_tile, column)
        summation = row[0].multiply_plain(diagonal.lookup(column, 0), tile=out_tile)
        for y in range(1, len(row)):
            product = row[y].multiply_plain(diagonal.lookup(column, y), tile=out_tile)
            summation = summation.combine(product)
        return summation.mod_down(min(RESULT_LEVEL, summation.level))

    def evaluate(
        self,
        enc_a: Sequence[Sequence[EncryptedTile]],
        diagonal: DiagonalTable,
    ) -> List[EncryptedTile]:
        """Evaluate every ``(x, c)`` pair and return results in emission order."""
        self._check_inputs(enc_a, diagonal)
        pairs = [(x, c) for x in range(self.plan.row_tiles) for c in range(self.plan.cols)]

        def run(pair: Tuple[int, int]) -> EncryptedTile:
            x, c = pair
            return self.accumulate(enc_a[x], diagonal, x, c)

        if self.workers == 1:
            results = [run(pair) for pair in pairs]
        else:
            with ThreadPoolExecutor(max_workers=self.workers) as pool:
                results = list(pool.map(run, pairs))

        logger.debug(
            "Evaluated %d ciphertexts (%d row tiles x %d columns, %d contraction tiles)",
            len(results),
            self.plan.row_tiles,
            self.plan.cols,
            self.plan.contraction_tiles,
        )
        return results
