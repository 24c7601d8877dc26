"""
Command-line entry points.

blindmatch-verify generates a database and a query from fixed seeds, runs the
full encrypted pipeline and prints the comparison against the plaintext
baseline. blindmatch-serve encrypts the seeded database once and serves the
encrypted maximum-similarity API over it.
"""
import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional, Tuple

from fastapi import FastAPI

from blindmatch.client.search import VerificationPipeline, run_verification
from blindmatch.server.api import create_app, run_server
from blindmatch.server.store import EncryptedStoreWriter, default_store_path, remove_store
from blindmatch.shared.config import BACKENDS, INTER_BATCH_MODES, PipelineConfig
from blindmatch.shared.errors import BlindMatchError
from blindmatch.shared.protocol import VerificationReport
from blindmatch.shared.utils import generate_random_vectors

logger = logging.getLogger(__name__)

ACCURACY_WARNING_PERCENT = 90.0

# Engine backends report context and key failures as RuntimeError
FATAL_ERRORS = (BlindMatchError, ImportError, OSError, RuntimeError, ValueError)


def build_parser(
    prog: str = "blindmatch-verify",
    description: str = "Privacy-preserving biometric uniqueness check over encrypted vectors",
) -> argparse.ArgumentParser:
    defaults = PipelineConfig()
    parser = argparse.ArgumentParser(prog=prog, description=description)
    parser.add_argument(
        "--mult-depth",
        type=int,
        default=defaults.mult_depth,
        help="Multiplicative depth budget of the scheme",
    )
    parser.add_argument(
        "--num-vectors", "-n",
        type=int,
        default=defaults.num_vectors,
        help="Number of database vectors",
    )
    parser.add_argument(
        "--vec-dim", "-d",
        type=int,
        default=defaults.vec_dim,
        help="Vector dimension",
    )
    parser.add_argument(
        "--batch-size", "-b",
        type=int,
        default=defaults.batch_size,
        help="Vectors reduced per streaming batch",
    )
    parser.add_argument(
        "--threshold",
        type=float,
        default=defaults.threshold,
        help="Similarity threshold for a near-duplicate",
    )
    parser.add_argument(
        "--parties",
        type=int,
        default=defaults.num_parties,
        help="Number of key-share holders (n)",
    )
    parser.add_argument(
        "--threshold-t",
        type=int,
        default=defaults.threshold_t,
        help="Key shares required to decrypt (t)",
    )
    parser.add_argument(
        "--backend",
        type=str,
        default=defaults.backend,
        choices=list(BACKENDS),
        help="Homomorphic engine backend",
    )
    parser.add_argument(
        "--margin",
        type=int,
        default=defaults.depth_margin,
        help="Levels kept below the budget before switching to the fallback blend",
    )
    parser.add_argument(
        "--fallback-bias",
        type=float,
        default=defaults.fallback_bias,
        help="Bias k of the fallback blend (0 = average)",
    )
    parser.add_argument(
        "--inter-batch",
        type=str,
        default=defaults.inter_batch,
        choices=list(INTER_BATCH_MODES),
        help="How batch results are merged",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=defaults.workers,
        help="Threads for similarity evaluation within a batch",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=defaults.seed,
        help="Seed for database vectors",
    )
    parser.add_argument(
        "--query-seed",
        type=int,
        default=defaults.query_seed,
        help="Seed for the query vector (equal to --seed reproduces entry 0)",
    )
    parser.add_argument(
        "--store-dir",
        type=str,
        default=None,
        help="Directory for the temporary encrypted store",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Debug logging",
    )
    return parser


def config_from_args(args: argparse.Namespace) -> PipelineConfig:
    return PipelineConfig(
        mult_depth=args.mult_depth,
        num_vectors=args.num_vectors,
        vec_dim=args.vec_dim,
        batch_size=args.batch_size,
        threshold=args.threshold,
        num_parties=args.parties,
        threshold_t=args.threshold_t,
        depth_margin=args.margin,
        fallback_bias=args.fallback_bias,
        inter_batch=args.inter_batch,
        workers=args.workers,
        seed=args.seed,
        query_seed=args.query_seed,
        backend=args.backend,
        store_dir=args.store_dir,
    )


def print_report(config: PipelineConfig, report: VerificationReport) -> None:
    print("\n" + "=" * 60)
    print("VERIFICATION RESULTS")
    print("=" * 60)
    print(report)

    if report.accuracy < ACCURACY_WARNING_PERCENT:
        print(f"\nWARNING: Accuracy below {ACCURACY_WARNING_PERCENT:.0f}%. "
              f"Consider a larger --mult-depth or a smaller --batch-size.")
    if report.truncated:
        print("\nWARNING: The encrypted store ended early; "
              f"only {report.vectors_processed} of {config.num_vectors} vectors were scored.")

    print("\nTiming:")
    for name, ms in report.timing.items():
        print(f"  {name:<20} {ms:10.1f} ms")
    print("=" * 60)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = config_from_args(args)

        print("=" * 60)
        print("Encrypted Biometric Uniqueness Check")
        print("=" * 60)
        print(f"  Backend:           {config.backend}")
        print(f"  Depth budget:      {config.mult_depth}")
        print(f"  Database size:     {config.num_vectors:,} vectors")
        print(f"  Dimension:         {config.vec_dim}")
        print(f"  Batch size:        {config.batch_size}")
        print(f"  Threshold:         {config.threshold}")
        print(f"  Key shares:        {config.threshold_t}-of-{config.num_parties}")

        report = run_verification(config)
    except FATAL_ERRORS as e:
        logger.debug("Verification failed", exc_info=True)
        print(f"FATAL ERROR: {e}", file=sys.stderr)
        return 1

    print_report(config, report)
    return 0


def build_service(config: PipelineConfig) -> Tuple[FastAPI, Path]:
    """
    Encrypt a seeded database to a fresh store and wrap it in the HTTP API.

    Args:
        config: Pipeline configuration (database seed, engine, batching)

    Returns:
        (app, store_path); the caller removes the store when done
    """
    pipeline = VerificationPipeline(config)
    database = generate_random_vectors(config.num_vectors, config.vec_dim, seed=config.seed)
    store_path = default_store_path(config.store_dir)
    try:
        EncryptedStoreWriter(
            pipeline.engine, pipeline.crypto.public_key, pipeline.crypto.codec
        ).write(iter(database), store_path)
    except BaseException:
        remove_store(store_path)
        raise
    logger.info("Serving %d encrypted vectors from %s", len(database), store_path)
    return create_app(pipeline.computation, store_path), store_path


def serve_main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser(
        prog="blindmatch-serve",
        description="Serve encrypted maximum-similarity search over a seeded encrypted store",
    )
    parser.add_argument("--host", type=str, default="127.0.0.1", help="Bind address")
    parser.add_argument("--port", type=int, default=8000, help="Bind port")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = config_from_args(args)
        app, store_path = build_service(config)
    except FATAL_ERRORS as e:
        logger.debug("Service setup failed", exc_info=True)
        print(f"FATAL ERROR: {e}", file=sys.stderr)
        return 1

    try:
        run_server(app, host=args.host, port=args.port)
    finally:
        remove_store(store_path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
