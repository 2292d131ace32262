#!/usr/bin/env python3
"""Sweep benchmark for encrypted matrix multiplication.

This script measures, for a range of square sizes:
- Client packing and encryption time
- Server evaluation time
- Client decryption and extraction time
- Ciphertexts sent and received

Usage:
    python benchmarks/benchmark_matmul.py [--sizes 32 64 128] [--trials 5] [--workers 1]
"""

import argparse
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List

import numpy as np
import torch

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from cryptgmm import ProtocolConfig, ProtocolOrchestrator
from cryptgmm.protocol import REPORT_COLUMNS


# =============================================================================
# Benchmark Results
# =============================================================================


@dataclass
class BenchmarkResult:
    """Container for benchmark results."""

    name: str
    samples: int
    mean_ms: float
    std_ms: float = 0.0
    min_ms: float = 0.0
    max_ms: float = 0.0
    extra: Dict[str, int] = field(default_factory=dict)

    def __str__(self) -> str:
        return (
            f"{self.name}: mean={self.mean_ms:.2f}ms, "
            f"std={self.std_ms:.2f}ms, "
            f"min={self.min_ms:.2f}ms, max={self.max_ms:.2f}ms"
        )


def compute_stats(times_ms: List[float]) -> BenchmarkResult:
    values = np.asarray(times_ms, dtype=np.float64)
    return BenchmarkResult(
        name="",
        samples=len(values),
        mean_ms=float(values.mean()),
        std_ms=float(values.std()),
        min_ms=float(values.min()),
        max_ms=float(values.max()),
    )


# =============================================================================
# Benchmarks
# =============================================================================


def benchmark_size(size: int, trials: int, workers: int, seed: int) -> List[BenchmarkResult]:
    """Run ``trials`` round trips of a ``size x size`` product."""
    config = ProtocolConfig(
        rows=size, inner=size, cols=size, trials=trials, seed=seed, workers=workers
    )
    report = ProtocolOrchestrator(config).run()
    if report.failed_trials:
        print(f"  WARNING: trials {report.failed_trials} did not verify")

    results = []
    for name, _ in REPORT_COLUMNS:
        result = compute_stats(report.samples(name))
        result.name = f"{size}x{size} {name}"
        result.extra = {
            "sent": report.ciphertexts_sent,
            "received": report.ciphertexts_received,
        }
        results.append(result)
    return results


def run_benchmarks(sizes: List[int], trials: int, workers: int, seed: int) -> None:
    print("=" * 70)
    print("CryptGMM Matrix Multiplication Benchmarks")
    print("=" * 70)
    print()
    print("System Information:")
    print(f"  PyTorch version: {torch.__version__}")
    print(f"  Threads: {torch.get_num_threads()}, workers: {workers}")
    print()

    all_results: List[BenchmarkResult] = []
    for size in sizes:
        print("-" * 70)
        print(f"Size: {size}x{size}x{size}")
        print("-" * 70)
        results = benchmark_size(size, trials, workers, seed)
        for result in results:
            print(f"  {result}")
        print(f"  Ciphertexts: {results[0].extra['sent']} up, {results[0].extra['received']} down")
        print()
        all_results.extend(results)

    print("=" * 70)
    print("Summary")
    print("=" * 70)
    print(f"  {'Benchmark':<30} {'Mean (ms)':<12} {'Std (ms)':<12}")
    print("  " + "-" * 54)
    for result in all_results:
        print(f"  {result.name:<30} {result.mean_ms:<12.2f} {result.std_ms:<12.2f}")
    print()
    print("NOTE: Timings use the simulated provider and are relative comparisons only.")


def main() -> None:
    """Entry point for benchmark script."""
    parser = argparse.ArgumentParser(description="CryptGMM Matrix Multiplication Benchmarks")
    parser.add_argument(
        "--sizes",
        type=int,
        nargs="+",
        default=[32, 64, 128],
        help="Square matrix sizes (default: 32 64 128)",
    )
    parser.add_argument(
        "--trials",
        type=int,
        default=5,
        help="Number of round trips per size (default: 5)",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Thread pool size (default: 1)",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=123,
        help="Base random seed (default: 123)",
    )
    args = parser.parse_args()

    run_benchmarks(sizes=args.sizes, trials=args.trials, workers=args.workers, seed=args.seed)


if __name__ == "__main__":
    main()
