"""Plot two vectors, push a scalar and render a magic-square mesh in an engine session."""

import argparse
import pathlib
import sys

import numpy as np


def _ensure_src_path(src_path: str) -> None:
    """Ensure ``src`` is importable in the current interpreter.

    :param src_path: Absolute path to the repository ``src`` directory.
    """
    exists: bool = src_path in sys.path
    if exists is False:
        sys.path.insert(0, src_path)


def _parse_args() -> argparse.Namespace:
    """Parse CLI arguments.

    :returns: Parsed CLI arguments.
    """
    parser = argparse.ArgumentParser(
        description="Drive an engine session: two plots, one variable and a mesh of magic(x)."
    )
    parser.add_argument("--shared", default=None, help="Shared session to join instead of starting one.")
    parser.add_argument("--engine", default=None, help="Backend target in module.path:ClassName format.")
    parser.add_argument("--points", type=int, default=1000, help="Length of the plotted vectors.")
    parser.add_argument("--order", type=float, default=5.0, help="Order of the magic square.")
    parser.add_argument("--log-level", default="INFO", help="Logging level name.")
    return parser.parse_args()


def main() -> int:
    """Run the demonstration.

    :returns: Process exit code where ``0`` indicates success.
    """
    args: argparse.Namespace = _parse_args()
    points: int = int(args.points)
    if points < 1:
        print("points must be >= 1")
        return 1

    repo_root: pathlib.Path = pathlib.Path(__file__).resolve().parent.parent
    _ensure_src_path(str(repo_root / "src"))

    from matbridge import EngineConfig
    from matbridge import EngineSession
    from matbridge import ShapeKind
    from matbridge import configure_logging

    config: EngineConfig = EngineConfig.from_env()
    if args.engine is not None:
        config.engine_target = args.engine
    configure_logging(args.log_level)

    print("matbridge engine demo")
    print(f"target={config.engine_target} shared={args.shared}")
    print("")

    with EngineSession(args.shared, config) as session:
        if session.is_usable is False:
            print(f"engine unavailable: {session.fault}")
            return 1

        ramp: np.ndarray = np.arange(points, dtype=np.float64)
        session.plot(ramp)

        noise: np.ndarray = np.random.default_rng().uniform(-1.0, 1.0, points)
        session.plot(noise)

        session.set_variable("x", float(args.order))
        evaluated = session.evaluate(["Z = eval('magic(x)')", "mesh(Z)"])
        if len(evaluated.value.error) > 0:
            print(f"evaluation failed: {evaluated.value.error.strip()}")
            return 1

        square = session.get_variable("Z", kind=ShapeKind.MATRIX)
        print("Z =")
        print(square.value)
        print(f"row sums={square.value.sum(axis=1)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
