"""Child process that hosts one engine backend for a session.

Requests are dicts carrying ``request_id`` and ``action`` plus action fields.
Replies carry the same ``request_id``, a ``status`` of ``ok`` or ``error`` and a
``payload``. Error payloads set ``rejected`` when the request itself was
malformed, as opposed to the backend failing while serving it.
"""

import importlib
import logging
import traceback
from multiprocessing.connection import Connection

from matbridge.arrays import DynamicArray
from matbridge.arrays import Workspace
from matbridge.backends.base import EngineBackend
from matbridge.errors import ProtocolError

logger = logging.getLogger(__name__)

STARTUP_REQUEST_ID: int = 0
UNKNOWN_REQUEST_ID: int = -1


def parse_target(target: str) -> tuple[str, str]:
    """Split a backend target such as ``matbridge.backends.matlab:MatlabBackend``.

    :param target: Backend target.
    :returns: Tuple of ``(module_name, class_path)``; the class path may be dotted.
    :raises ValueError: If the target does not name exactly one module and one class.
    """
    module_name, separator, class_path = target.partition(":")
    module_name = module_name.strip()
    class_path = class_path.strip()
    if separator != ":" or ":" in class_path:
        raise ValueError(f"Engine backend target {target!r} must look like module.path:ClassName")
    if len(module_name) == 0 or len(class_path) == 0:
        raise ValueError(f"Engine backend target {target!r} names no module or no class")
    return module_name, class_path


def load_backend(target: str, options: dict[str, object]) -> EngineBackend:
    """Import and instantiate the backend named by ``target``.

    :param target: Backend in ``module.path:ClassName`` format.
    :param options: Keyword arguments for the backend constructor.
    :returns: Backend instance.
    :raises TypeError: If the target does not name an :class:`EngineBackend` subclass.
    """
    module_name, class_path = parse_target(target)
    backend_class: object = importlib.import_module(module_name)
    for attribute in class_path.split("."):
        backend_class = getattr(backend_class, attribute)
    is_backend_class: bool = isinstance(backend_class, type) and issubclass(backend_class, EngineBackend)
    if is_backend_class is False:
        raise TypeError(f"Engine target {target} is not an EngineBackend subclass")
    logger.debug("Loaded engine backend %s", target)
    return backend_class(**options)  # type: ignore[operator]


def _reply(connection: Connection, request_id: int, status: str, payload: dict[str, object]) -> None:
    """Send one reply, ignoring a session that has already gone away.

    :param connection: IPC connection.
    :param request_id: Identifier of the request being answered.
    :param status: ``ok`` or ``error``.
    :param payload: Reply payload.
    """
    try:
        connection.send({"request_id": request_id, "status": status, "payload": payload})
    except (BrokenPipeError, EOFError, OSError):
        return


def _error_payload(exc: BaseException, rejected: bool) -> dict[str, object]:
    """Describe an exception for the session side.

    :param exc: Exception raised while handling a request.
    :param rejected: Whether the request was malformed.
    :returns: Error payload.
    """
    return {
        "error_type": type(exc).__name__,
        "error_message": str(exc),
        "stacktrace": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
        "rejected": rejected,
    }


def _field(message: dict[str, object], key: str, expected: type | tuple[type, ...], description: str) -> object:
    """Read one request field of the expected type.

    :param message: Request message.
    :param key: Field name.
    :param expected: Accepted type or types.
    :param description: Human-readable form of the expected value.
    :returns: Field value.
    :raises ProtocolError: If the field is missing or has the wrong type.
    """
    value: object = message.get(key)
    if isinstance(value, expected) is False or isinstance(value, bool) is True:
        raise ProtocolError(f"{key} must be {description}")
    return value


def _workspace_field(message: dict[str, object]) -> Workspace:
    """Read the workspace scope of a variable request.

    :param message: Request message.
    :returns: Workspace scope.
    :raises ProtocolError: If the field names no workspace.
    """
    raw: object = _field(message, "workspace", str, "a workspace name")
    try:
        return Workspace(raw)
    except ValueError as exc:
        raise ProtocolError(f"Unknown workspace: {raw!r}") from exc


def _arrays_field(message: dict[str, object]) -> list[DynamicArray]:
    """Read the argument list of an invoke request.

    :param message: Request message.
    :returns: Engine arrays in call order.
    :raises ProtocolError: If ``args`` is not a list of engine arrays.
    """
    raw: object = _field(message, "args", list, "a list")
    for item in raw:  # type: ignore[attr-defined]
        if isinstance(item, DynamicArray) is False:
            raise ProtocolError("args must only contain DynamicArray values")
    return list(raw)  # type: ignore[call-overload]


class WorkerRuntime:
    """Own worker-side protocol handling and backend dispatch."""

    _connection: Connection
    _engine_target: str
    _backend_options: dict[str, object]
    _backend: EngineBackend | None

    def __init__(
        self,
        connection: Connection,
        engine_target: str,
        backend_options: dict[str, object] | None = None,
    ) -> None:
        """Initialize worker runtime state.

        :param connection: Bidirectional IPC connection to the session process.
        :param engine_target: Backend in ``module.path:ClassName`` format.
        :param backend_options: Keyword arguments for the backend constructor.
        """
        self._connection = connection
        self._engine_target = engine_target
        if backend_options is None:
            self._backend_options = {}
        else:
            self._backend_options = dict(backend_options)
        self._backend = None

    def run(self) -> None:
        """Load the backend, then serve requests until shutdown or disconnect."""
        try:
            self._backend = load_backend(self._engine_target, self._backend_options)
        except Exception as exc:
            _reply(self._connection, STARTUP_REQUEST_ID, "error", _error_payload(exc, rejected=False))
            self._connection.close()
            return
        _reply(self._connection, STARTUP_REQUEST_ID, "ok", {"ready": True})

        should_exit: bool = False
        while should_exit is False:
            try:
                incoming: object = self._connection.recv()
            except (EOFError, OSError):
                break

            if isinstance(incoming, dict) is False:
                rejection: ProtocolError = ProtocolError("Incoming message must be a dict")
                _reply(self._connection, UNKNOWN_REQUEST_ID, "error", _error_payload(rejection, rejected=True))
                continue

            should_exit = self._handle_incoming_request(incoming)

        self._terminate_backend()
        self._connection.close()

    def _terminate_backend(self) -> None:
        """Release the backend's engine connection once."""
        backend: EngineBackend | None = self._backend
        self._backend = None
        if backend is None:
            return
        try:
            backend.terminate()
        except Exception:
            logger.warning("Engine backend failed to terminate cleanly", exc_info=True)

    def _require_backend(self) -> EngineBackend:
        """Return the loaded backend.

        :returns: Backend instance.
        :raises ProtocolError: If the backend was already released.
        """
        backend: EngineBackend | None = self._backend
        if backend is None:
            raise ProtocolError("Engine backend is not loaded")
        return backend

    def _handle_incoming_request(self, request_message: dict[str, object]) -> bool:
        """Serve one request and answer it under its own identifier.

        Requests without a usable identifier are answered on ``-1``.

        :param request_message: Request dictionary.
        :returns: ``True`` when loop shutdown is requested.
        """
        request_id_obj: object = request_message.get("request_id")
        request_id: int = UNKNOWN_REQUEST_ID
        if isinstance(request_id_obj, int) is True and isinstance(request_id_obj, bool) is False:
            request_id = request_id_obj

        try:
            if request_id == UNKNOWN_REQUEST_ID:
                raise ProtocolError("request_id must be an integer")
            payload: dict[str, object] = self._execute_request(request_message)
        except ProtocolError as exc:
            _reply(self._connection, request_id, "error", _error_payload(exc, rejected=True))
            return False
        except Exception as exc:
            _reply(self._connection, request_id, "error", _error_payload(exc, rejected=False))
            return False

        _reply(self._connection, request_id, "ok", payload)
        return payload.get("shutdown") is True

    def _execute_request(self, message: dict[str, object]) -> dict[str, object]:
        """Execute one request from the session.

        :param message: Request message.
        :returns: Response payload.
        :raises ProtocolError: If request fields are invalid.
        """
        action: object = _field(message, "action", str, "a string")

        if action == "shutdown":
            self._terminate_backend()
            return {"shutdown": True}

        backend: EngineBackend = self._require_backend()

        if action == "find":
            names: list[str] = backend.find()
            return {"names": list(names)}

        if action == "connect":
            shared_name: object = message.get("shared_name")
            if shared_name is not None and isinstance(shared_name, str) is False:
                raise ProtocolError("shared_name must be a string or None")
            backend.connect(shared_name)
            return {}

        if action == "get_variable":
            name: object = _field(message, "name", str, "a string")
            workspace: Workspace = _workspace_field(message)
            value: DynamicArray = backend.get_variable(name, workspace)  # type: ignore[arg-type]
            return {"value": value}

        if action == "set_variable":
            name = _field(message, "name", str, "a string")
            workspace = _workspace_field(message)
            array: object = _field(message, "value", DynamicArray, "a DynamicArray")
            backend.set_variable(name, array, workspace)  # type: ignore[arg-type]
            return {}

        if action == "evaluate":
            statement: object = _field(message, "statement", str, "a string")
            output, error = backend.evaluate(statement)  # type: ignore[arg-type]
            return {"output": output, "error": error}

        if action == "invoke":
            function_name: object = _field(message, "function_name", str, "a string")
            num_returns: object = _field(message, "num_returns", int, "a non-negative integer")
            if num_returns < 0:  # type: ignore[operator]
                raise ProtocolError("num_returns must be a non-negative integer")
            args: list[DynamicArray] = _arrays_field(message)
            values, output, error = backend.invoke(function_name, num_returns, args)  # type: ignore[arg-type]
            return {"values": list(values), "output": output, "error": error}

        raise ProtocolError(f"Unsupported action: {action}")


def worker_entry(
    connection: Connection,
    engine_target: str,
    backend_options: dict[str, object] | None = None,
) -> None:
    """Run the worker message loop.

    :param connection: IPC connection from the session process.
    :param engine_target: Backend in ``module.path:ClassName`` format.
    :param backend_options: Keyword arguments for the backend constructor.
    """
    runtime: WorkerRuntime = WorkerRuntime(connection, engine_target, backend_options)
    runtime.run()
