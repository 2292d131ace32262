"""
CryptGMM: client/server matrix multiplication over levelled HE.

A client holds a private matrix A, a server holds a matrix B, and the
client learns A x B mod p without revealing A. Each ciphertext packs an
``l x d`` tile of A: rows go to SIMD slots, the contraction dimension to the
coefficients of the ring element in each slot. The server multiplies by
pre-aligned plaintexts of B, accumulates over contraction tiles and sends
back one ciphertext per (row tile, column of B).

Quick Start:
    >>> import cryptgmm
    >>>
    >>> # 1. Describe the run
    >>> config = cryptgmm.ProtocolConfig(rows=64, inner=64, cols=16, trials=5)
    >>>
    >>> # 2. Run it against the simulated provider
    >>> report = cryptgmm.ProtocolOrchestrator(config).run()
    >>>
    >>> # 3. Inspect the result
    >>> print(report.format_line())
    >>> trial = report.trials[0]
    >>> assert trial.result == trial.a @ trial.b

For more control, you can use the lower-level APIs:
    - SchemeParams: Slots, degree, plaintext modulus, level budget
    - DoublePacker / DiagonalEncoder: Client and server encodings
    - Evaluator: The server's multiply-accumulate schedule
    - HEProvider: Plug in a real HE library
"""

__version__ = "0.1.0"

from .config import ProtocolConfig, SchemeParams
from .errors import BoundsError, CiphertextFault, ConfigurationError, CorrectnessWarning
from .matrix import Matrix
from .provider import EncryptedTile, HEProvider
from .simulation import SimulatedProvider
from .extraction import ExtractionTable, extract_inner_products, fill_result, precompute_extraction_table
from .evaluator import EvaluationPlan, Evaluator
from .protocol import BenchmarkReport, Phase, PhaseTimings, ProtocolOrchestrator, TrialResult

from . import batching
from .batching import DiagonalEncoder, DoublePacker

__all__ = [
    # Version
    "__version__",
    # Configuration
    "ProtocolConfig",
    "SchemeParams",
    # Errors
    "BoundsError",
    "CiphertextFault",
    "ConfigurationError",
    "CorrectnessWarning",
    # Data
    "Matrix",
    # Providers
    "HEProvider",
    "EncryptedTile",
    "SimulatedProvider",
    # Encoding
    "batching",
    "DoublePacker",
    "DiagonalEncoder",
    "ExtractionTable",
    "precompute_extraction_table",
    "extract_inner_products",
    "fill_result",
    # Evaluation
    "EvaluationPlan",
    "Evaluator",
    # Protocol
    "Phase",
    "PhaseTimings",
    "TrialResult",
    "BenchmarkReport",
    "ProtocolOrchestrator",
]
