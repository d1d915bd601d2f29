"""Engine backends hosted by the matbridge worker process."""

from matbridge.backends.base import EngineBackend

MATLAB_BACKEND_TARGET: str = "matbridge.backends.matlab:MatlabBackend"

__all__: list[str] = ["EngineBackend", "MATLAB_BACKEND_TARGET"]
