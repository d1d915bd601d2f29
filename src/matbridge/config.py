"""
Configuration & Logging
=======================
Central place for the settings a session needs before it talks to an engine.

Environment variables:
    MATBRIDGE_ENGINE: Backend target in ``module.path:ClassName`` format.
    MATBRIDGE_LOG_LEVEL: Logging level name used by :func:`configure_logging`.
"""
import logging
import os
from collections.abc import Mapping

from matbridge.backends import MATLAB_BACKEND_TARGET

ENGINE_ENV_VAR: str = "MATBRIDGE_ENGINE"
LOG_LEVEL_ENV_VAR: str = "MATBRIDGE_LOG_LEVEL"
DEFAULT_LOG_LEVEL: str = "WARNING"
LOG_FORMAT: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class EngineConfig:
    """Settings used to start a session's engine worker."""

    engine_target: str
    backend_options: dict[str, object]
    log_level: str

    def __init__(
        self,
        engine_target: str = MATLAB_BACKEND_TARGET,
        backend_options: dict[str, object] | None = None,
        log_level: str = DEFAULT_LOG_LEVEL,
    ) -> None:
        """Initialize engine settings.

        :param engine_target: Backend in ``module.path:ClassName`` format.
        :param backend_options: Keyword arguments for the backend constructor.
        :param log_level: Logging level name.
        """
        self.engine_target = engine_target
        if backend_options is None:
            self.backend_options = {}
        else:
            self.backend_options = dict(backend_options)
        self.log_level = log_level.upper()

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "EngineConfig":
        """Build settings from environment variables, falling back to defaults.

        :param environ: Environment mapping, ``os.environ`` when omitted.
        :returns: Engine settings.
        """
        if environ is None:
            environ = os.environ
        engine_target: str = environ.get(ENGINE_ENV_VAR, "").strip()
        if len(engine_target) == 0:
            engine_target = MATLAB_BACKEND_TARGET
        log_level: str = environ.get(LOG_LEVEL_ENV_VAR, "").strip()
        if len(log_level) == 0:
            log_level = DEFAULT_LOG_LEVEL
        return cls(engine_target=engine_target, log_level=log_level)

    def __repr__(self) -> str:
        return f"EngineConfig(engine_target={self.engine_target!r}, log_level={self.log_level!r})"


def configure_logging(level: str | int = DEFAULT_LOG_LEVEL) -> None:
    """Send matbridge log records to stderr.

    Meant for command-line entry points; library code never calls it.

    :param level: Logging level name or number.
    :raises ValueError: If ``level`` names no logging level.
    """
    resolved: int | str = level
    if isinstance(level, str) is True:
        resolved = logging.getLevelName(level.upper())
        if isinstance(resolved, int) is False:
            raise ValueError(f"Unknown log level: {level!r}")

    package_logger: logging.Logger = logging.getLogger("matbridge")
    package_logger.setLevel(resolved)
    if len(package_logger.handlers) == 0:
        handler: logging.Handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        package_logger.addHandler(handler)
