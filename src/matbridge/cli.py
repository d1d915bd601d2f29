"""Command line access to an engine: list shared sessions, evaluate, call."""

import argparse
import sys
from collections.abc import Sequence

import numpy as np

from matbridge.arrays import DynamicArray
from matbridge.config import EngineConfig
from matbridge.config import configure_logging
from matbridge.marshal import ShapeKind
from matbridge.marshal import decode
from matbridge.session import EngineSession

EXIT_OK: int = 0
EXIT_FAILED: int = 1


def _build_parser() -> argparse.ArgumentParser:
    """Build the command line parser.

    :returns: Configured parser.
    """
    parser = argparse.ArgumentParser(
        prog="matbridge",
        description="Drive an external numerical engine session.",
    )
    parser.add_argument(
        "--engine",
        default=None,
        help="Backend target in module.path:ClassName format (default: $MATBRIDGE_ENGINE or MATLAB).",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level name (default: $MATBRIDGE_LOG_LEVEL or WARNING).",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("find", help="List shared engine sessions.")

    eval_parser = subparsers.add_parser("eval", help="Evaluate statements, one per argument.")
    eval_parser.add_argument("statements", nargs="+")
    eval_parser.add_argument("--shared", default=None, help="Shared session name to join.")

    call_parser = subparsers.add_parser("call", help="Call a function with scalar arguments.")
    call_parser.add_argument("function_name")
    call_parser.add_argument("arguments", nargs="*", type=float)
    call_parser.add_argument("--nargout", type=int, default=1, help="Number of return values.")
    call_parser.add_argument("--shared", default=None, help="Shared session name to join.")
    return parser


def format_array(array: DynamicArray) -> str:
    """Render an engine array for terminal output.

    :param array: Engine array.
    :returns: Human-readable text.
    """
    if array.rank == 2 and array.number_of_elements == 1:
        return repr(decode(array, ShapeKind.SCALAR))
    if array.rank == 2 and array.is_empty is False:
        matrix: object = decode(array, ShapeKind.MATRIX)
        return np.array2string(matrix)  # type: ignore[arg-type]
    return repr(array)


def _resolve_config(args: argparse.Namespace) -> EngineConfig:
    """Merge command line overrides into the environment settings.

    :param args: Parsed arguments.
    :returns: Engine settings.
    """
    config: EngineConfig = EngineConfig.from_env()
    if args.engine is not None:
        config.engine_target = args.engine
    if args.log_level is not None:
        config.log_level = args.log_level.upper()
    return config


def _run_find(config: EngineConfig) -> int:
    outcome = EngineSession.discover(config)
    for name in outcome.value:
        print(name)
    return EXIT_OK if outcome.ok is True else EXIT_FAILED


def _run_eval(config: EngineConfig, args: argparse.Namespace) -> int:
    with EngineSession(args.shared, config) as session:
        outcome = session.evaluate(args.statements)
    if len(outcome.value.output) > 0:
        sys.stdout.write(outcome.value.output)
    if len(outcome.value.error) > 0:
        sys.stderr.write(outcome.value.error)
    failed: bool = outcome.ok is False or len(outcome.value.error) > 0
    return EXIT_FAILED if failed is True else EXIT_OK


def _run_call(config: EngineConfig, args: argparse.Namespace) -> int:
    with EngineSession(args.shared, config) as session:
        outcome = session.invoke(args.function_name, *args.arguments, num_returns=args.nargout)
    if len(outcome.output) > 0:
        sys.stdout.write(outcome.output)
    for value in outcome.value:  # type: ignore[attr-defined]
        print(format_array(value))
    if len(outcome.error_output) > 0:
        sys.stderr.write(outcome.error_output)
    failed: bool = outcome.ok is False or len(outcome.error_output) > 0
    return EXIT_FAILED if failed is True else EXIT_OK


def main(argv: Sequence[str] | None = None) -> int:
    """Run the command line interface.

    :param argv: Arguments without the program name, ``sys.argv[1:]`` when omitted.
    :returns: Process exit status.
    """
    parser: argparse.ArgumentParser = _build_parser()
    args: argparse.Namespace = parser.parse_args(argv)
    config: EngineConfig = _resolve_config(args)
    configure_logging(config.log_level)

    if args.command == "find":
        return _run_find(config)
    if args.command == "eval":
        return _run_eval(config, args)
    return _run_call(config, args)


if __name__ == "__main__":
    sys.exit(main())
