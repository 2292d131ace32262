"""Command-line benchmark for encrypted matrix multiplication.

Usage:
    cryptgmm-bench [-N 128] [-M 128] [-D 128] [--trials 50]
    python -m cryptgmm N=64 M=64 D=16

Prints one line: ``mean std`` (milliseconds) for pack, encrypt, decrypt,
unpack, total client time and server evaluation, followed by the number
of ciphertexts sent and received.
"""

from __future__ import annotations

import argparse
import logging
import re
import sys
from typing import List, Optional, Sequence

from .config import ProtocolConfig, SchemeParams
from .errors import ConfigurationError
from .protocol import ProtocolOrchestrator

logger = logging.getLogger(__name__)

_KEY_VALUE = re.compile(r"^([NMD])=(.+)$")


def normalize_argv(argv: Sequence[str]) -> List[str]:
    """Rewrite ``N=64`` style tokens into ``-N 64``."""
    normalized: List[str] = []
    for token in argv:
        match = _KEY_VALUE.match(token)
        if match:
            normalized.extend([f"-{match.group(1)}", match.group(2)])
        else:
            normalized.append(token)
    return normalized


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cryptgmm-bench",
        description="Benchmark encrypted client/server matrix multiplication",
    )
    parser.add_argument("-N", dest="rows", type=int, default=128, help="Rows of A (default: 128)")
    parser.add_argument(
        "-M", dest="inner", type=int, default=128, help="Columns of A / rows of B (default: 128)"
    )
    parser.add_argument("-D", dest="cols", type=int, default=128, help="Columns of B (default: 128)")
    parser.add_argument("--trials", type=int, default=50, help="Number of round trips (default: 50)")
    parser.add_argument("--seed", type=int, default=123, help="Base random seed (default: 123)")
    parser.add_argument("--slots", type=int, default=None, help="SIMD slots per ciphertext")
    parser.add_argument("--degree", type=int, default=None, help="Degree of each slot element")
    parser.add_argument("--modulus", type=int, default=None, help="Plaintext modulus")
    parser.add_argument(
        "--levels",
        type=int,
        default=None,
        help="Level budget (default: just enough for -M)",
    )
    parser.add_argument("--workers", type=int, default=1, help="Thread pool size (default: 1)")
    parser.add_argument(
        "--no-verify",
        dest="verify",
        action="store_false",
        help="Skip the plaintext reference check",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0, help="More logging")
    return parser


def config_from_args(args: argparse.Namespace) -> ProtocolConfig:
    overrides = {
        key: value
        for key, value in (
            ("slots", args.slots),
            ("degree", args.degree),
            ("modulus", args.modulus),
            ("level_budget", args.levels),
        )
        if value is not None
    }
    params = SchemeParams.for_dimensions(args.inner, **overrides)
    return ProtocolConfig(
        rows=args.rows,
        inner=args.inner,
        cols=args.cols,
        trials=args.trials,
        seed=args.seed,
        verify=args.verify,
        workers=args.workers,
        params=params,
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point for ``cryptgmm-bench``."""
    parser = build_parser()
    args = parser.parse_args(normalize_argv(sys.argv[1:] if argv is None else argv))

    level = logging.WARNING
    if args.verbose == 1:
        level = logging.INFO
    elif args.verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    try:
        config = config_from_args(args)
        report = ProtocolOrchestrator(config).run()
    except ConfigurationError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    sys.stdout.write(report.format_line() + "\n")
    if report.failed_trials:
        logger.warning("%d trial(s) reported errors", len(report.failed_trials))
    return 0


if __name__ == "__main__":
    sys.exit(main())
