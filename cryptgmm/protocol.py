"""
Client/server round trip for encrypted matrix multiplication.

``ProtocolOrchestrator`` drives one trial through a fixed, forward-only
sequence of phases:

    Init -> ClientEncode -> ClientEncrypt -> Upload -> ServerEvaluate ->
    Download -> ClientDecrypt -> ClientExtract -> Reconstruct -> (Verify) -> Done

Every phase is timed on its own. Trials return explicit ``TrialResult``
objects and ``run()`` aggregates them into a ``BenchmarkReport``; nothing
is accumulated in module-level state. Upload and Download are in-memory
hand-offs; a deployment puts its transport there.
"""

from __future__ import annotations

import enum
import logging
import time
import warnings
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple, TypeVar

import numpy as np
import torch

from .batching.diagonal import DiagonalEncoder
from .batching.packing import DoublePacker
from .config import ProtocolConfig, SchemeParams
from .errors import CiphertextFault, ConfigurationError, CorrectnessWarning
from .evaluator import EvaluationPlan, Evaluator
from .extraction import extract_inner_products, fill_result, precompute_extraction_table
from .matrix import Matrix
from .provider import EncryptedTile, HEProvider
from .simulation import SimulatedProvider

__all__ = [
    "Phase",
    "PhaseTimings",
    "TrialResult",
    "BenchmarkReport",
    "ProtocolOrchestrator",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class Phase(enum.Enum):
    INIT = "init"
    CLIENT_ENCODE = "client_encode"
    CLIENT_ENCRYPT = "client_encrypt"
    UPLOAD = "upload"
    SERVER_EVALUATE = "server_evaluate"
    DOWNLOAD = "download"
    CLIENT_DECRYPT = "client_decrypt"
    CLIENT_EXTRACT = "client_extract"
    RECONSTRUCT = "reconstruct"
    VERIFY = "verify"
    DONE = "done"


_PHASE_ORDER: Dict[Phase, int] = {phase: i for i, phase in enumerate(Phase)}


class PhaseTimings:
    """Per-phase wall-clock durations (seconds) of one trial.

    Phases may only be entered in protocol order; ``Verify`` may be skipped.
    """

    def __init__(self) -> None:
        self._durations: Dict[Phase, float] = {}
        self._current: Optional[Phase] = None
        self._started = time.perf_counter()
        self.total = 0.0

    @property
    def current(self) -> Optional[Phase]:
        return self._current

    def _advance(self, phase: Phase) -> None:
        if self._current is not None and _PHASE_ORDER[phase] <= _PHASE_ORDER[self._current]:
            raise RuntimeError(
                f"Phase {phase.value} cannot follow {self._current.value}"
            )
        self._current = phase

    @contextmanager
    def phase(self, phase: Phase) -> Iterator[None]:
        self._advance(phase)
        start = time.perf_counter()
        try:
            yield
        finally:
            self._durations[phase] = self._durations.get(phase, 0.0) + time.perf_counter() - start

    def finish(self) -> None:
        self._advance(Phase.DONE)
        self.total = time.perf_counter() - self._started

    def __getitem__(self, phase: Phase) -> float:
        return self._durations.get(phase, 0.0)

    def as_dict(self) -> Dict[str, float]:
        return {phase.value: seconds for phase, seconds in self._durations.items()}

    def __repr__(self) -> str:
        parts = ", ".join(f"{k}={v * 1000:.2f}ms" for k, v in self.as_dict().items())
        return f"PhaseTimings({parts}, total={self.total * 1000:.2f}ms)"


@dataclass
class TrialResult:
    """Everything one round trip produced."""

    trial: int
    seed: Optional[int]
    a: Matrix
    b: Matrix
    result: Matrix
    timings: PhaseTimings
    ciphertexts_sent: int
    ciphertexts_received: int
    faults: List[CiphertextFault] = field(default_factory=list)
    invalid: Optional[torch.Tensor] = None
    verified: Optional[bool] = None
    mismatches: int = 0

    @property
    def ok(self) -> bool:
        return not self.faults and self.verified is not False


# Columns of the benchmark line, in output order.
REPORT_COLUMNS: Tuple[Tuple[str, Optional[Phase]], ...] = (
    ("pack", Phase.CLIENT_ENCODE),
    ("encrypt", Phase.CLIENT_ENCRYPT),
    ("decrypt", Phase.CLIENT_DECRYPT),
    ("unpack", Phase.CLIENT_EXTRACT),
    ("total", None),
    ("evaluate", Phase.SERVER_EVALUATE),
)


@dataclass
class BenchmarkReport:
    """Trials of one run, with mean/std per reported phase (milliseconds)."""

    config: ProtocolConfig
    trials: List[TrialResult] = field(default_factory=list)

    def samples(self, name: str) -> List[float]:
        phase = dict(REPORT_COLUMNS)[name]
        if phase is None:
            return [t.timings.total * 1000 for t in self.trials]
        return [t.timings[phase] * 1000 for t in self.trials]

    def summary(self) -> Dict[str, Tuple[float, float]]:
        stats: Dict[str, Tuple[float, float]] = {}
        for name, _ in REPORT_COLUMNS:
            values = self.samples(name)
            if values:
                stats[name] = (float(np.mean(values)), float(np.std(values)))
            else:
                stats[name] = (0.0, 0.0)
        return stats

    @property
    def ciphertexts_sent(self) -> int:
        return self.trials[-1].ciphertexts_sent if self.trials else 0

    @property
    def ciphertexts_received(self) -> int:
        return self.trials[-1].ciphertexts_received if self.trials else 0

    @property
    def failed_trials(self) -> List[int]:
        return [t.trial for t in self.trials if not t.ok]

    def format_line(self) -> str:
        """``mean std`` pairs for every column, then ciphertexts sent and received."""
        parts = [f"{mean:.3f} {std:.3f}" for mean, std in self.summary().values()]
        parts.append(f"{self.ciphertexts_sent} {self.ciphertexts_received}")
        return " ".join(parts)


class ProtocolOrchestrator:
    """Runs the encrypted multiplication round trip for a ``ProtocolConfig``.

    All trials share one provider (and therefore one key), so parameter-only
    precomputation is amortised the way a long-lived session would.

    Example:
        >>> config = ProtocolConfig(rows=64, inner=64, cols=16, trials=3)
        >>> report = ProtocolOrchestrator(config).run()
        >>> print(report.format_line())
    """

    def __init__(self, config: ProtocolConfig, provider: Optional[HEProvider] = None):
        self.config = config
        self.params: SchemeParams = config.resolved_params
        if provider is None:
            provider = SimulatedProvider(self.params, seed=config.seed)
        elif provider.params != self.params:
            raise ConfigurationError(
                f"Provider runs {provider.params} but the configuration asks for {self.params}"
            )
        self.provider = provider
        # Reject impossible configurations before anything is generated.
        self.plan = EvaluationPlan.build(
            self.params, (config.rows, config.inner), (config.inner, config.cols)
        )
        self.table = precompute_extraction_table(self.params)
        self.packer = DoublePacker(self.params)
        self.encoder = DiagonalEncoder(self.params, self.provider, self.table)

    def _map(self, fn: Callable[[T], R], items: Sequence[T]) -> List[R]:
        if self.config.workers == 1 or len(items) <= 1:
            return [fn(item) for item in items]
        with ThreadPoolExecutor(max_workers=self.config.workers) as pool:
            return list(pool.map(fn, items))

    def generate_operands(self, trial: int) -> Tuple[Matrix, Matrix]:
        """Fresh A and B for ``trial``, drawn from an explicitly seeded generator."""
        generator = torch.Generator().manual_seed(self.config.trial_seed(trial))
        p = self.params.modulus
        bound = self.config.value_bound
        a = Matrix.random(self.config.rows, self.config.inner, p, generator, bound=bound)
        b = Matrix.random(self.config.inner, self.config.cols, p, generator, bound=bound)
        return a, b

    def run_trial(
        self,
        trial: int = 0,
        a: Optional[Matrix] = None,
        b: Optional[Matrix] = None,
    ) -> TrialResult:
        """One full round trip.

        ``a`` and ``b`` default to matrices generated from the trial seed.

        Raises:
            ConfigurationError: Before any ciphertext is produced, if the
                operands do not fit the scheme parameters.
        """
        seed: Optional[int] = None
        if a is None or b is None:
            if a is not None or b is not None:
                raise ValueError("Pass both operands or neither")
            seed = self.config.trial_seed(trial)
            a, b = self.generate_operands(trial)

        params = self.params
        timings = PhaseTimings()

        with timings.phase(Phase.INIT):
            for name, operand in (("A", a), ("B", b)):
                if operand.modulus != params.modulus:
                    raise ConfigurationError(
                        f"{name} is over Z_{operand.modulus} but the scheme plaintext "
                        f"modulus is {params.modulus}"
                    )
            plan = EvaluationPlan.build(params, a.shape, b.shape)
            diagonal = self.encoder.encode(b)

        with timings.phase(Phase.CLIENT_ENCODE):
            grid = self.packer.partitioner.grid(a.rows, a.cols)
            tiles = list(self.packer.partitioner.tiles(grid))
            slot_tiles = self._map(lambda tile: self.packer.pack_slots(a, tile, grid), tiles)

        with timings.phase(Phase.CLIENT_ENCRYPT):
            encrypted = self._map(
                lambda item: EncryptedTile.encrypt(self.provider, item[1], item[0]),
                list(zip(tiles, slot_tiles)),
            )
            enc_a = [
                encrypted[x * grid.col_tiles:(x + 1) * grid.col_tiles]
                for x in range(grid.row_tiles)
            ]

        with timings.phase(Phase.UPLOAD):
            uploaded = [list(row) for row in enc_a]
            sent = sum(len(row) for row in uploaded)

        with timings.phase(Phase.SERVER_EVALUATE):
            returned = Evaluator(self.provider, plan, workers=self.config.workers).evaluate(
                uploaded, diagonal
            )

        with timings.phase(Phase.DOWNLOAD):
            downloaded = list(returned)
            received = len(downloaded)

        faults: List[CiphertextFault] = []
        with timings.phase(Phase.CLIENT_DECRYPT):
            decrypted = []
            for index, ctx in enumerate(downloaded):
                if not ctx.is_well_formed():
                    row_tile, column = plan.position(index)
                    faults.append(CiphertextFault(index, row_tile, column, ctx.level))
                decrypted.append(ctx.decrypt())

        with timings.phase(Phase.CLIENT_EXTRACT):
            extracted = [extract_inner_products(slots, self.table) for slots in decrypted]

        with timings.phase(Phase.RECONSTRUCT):
            result = Matrix.zeros(a.rows, b.cols, params.modulus)
            invalid = torch.zeros(a.rows, b.cols, dtype=torch.bool)
            faulty = {fault.index for fault in faults}
            for index, values in enumerate(extracted):
                row_tile, column = plan.position(index)
                written = fill_result(result, row_tile, column, values, params)
                if index in faulty:
                    start = row_tile * params.slots
                    invalid[start:start + written, column] = True

        verified: Optional[bool] = None
        mismatches = 0
        if self.config.verify:
            with timings.phase(Phase.VERIFY):
                mismatches = result.mismatches(a.matmul(b))
                verified = mismatches == 0
            if not verified:
                warnings.warn(
                    f"Trial {trial}: encrypted product differs from the plaintext "
                    f"reference in {mismatches} of {result.rows * result.cols} entries",
                    CorrectnessWarning,
                    stacklevel=2,
                )

        timings.finish()

        if faults:
            logger.warning(
                "Trial %d: %d of %d returned ciphertexts failed the well-formedness "
                "check (first at row tile %d, column %d); %d result entries marked invalid",
                trial,
                len(faults),
                received,
                faults[0].row_tile,
                faults[0].column,
                int(invalid.sum()),
            )

        return TrialResult(
            trial=trial,
            seed=seed,
            a=a,
            b=b,
            result=result,
            timings=timings,
            ciphertexts_sent=sent,
            ciphertexts_received=received,
            faults=faults,
            invalid=invalid,
            verified=verified,
            mismatches=mismatches,
        )

    def run(self) -> BenchmarkReport:
        """Run ``config.trials`` trials and aggregate them."""
        report = BenchmarkReport(config=self.config)
        logger.info("Running %s", self.config.describe())
        for trial in range(self.config.trials):
            result = self.run_trial(trial)
            logger.info(
                "Trial %d done in %.2fms (evaluate %.2fms)%s",
                trial,
                result.timings.total * 1000,
                result.timings[Phase.SERVER_EVALUATE] * 1000,
                "" if result.ok else " with errors",
            )
            report.trials.append(result)
        return report
