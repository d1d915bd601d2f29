"""Session-process end of the IPC channel to the engine worker."""

import logging
import multiprocessing
import threading
from multiprocessing.connection import Connection

from matbridge.errors import ChannelLost
from matbridge.errors import ProtocolError
from matbridge.errors import RemoteError
from matbridge.errors import RequestRejected
from matbridge.worker import STARTUP_REQUEST_ID
from matbridge.worker import worker_entry

logger = logging.getLogger(__name__)

_SHUTDOWN_JOIN_SECONDS: float = 5.0


class EngineChannel:
    """Manage one worker process and its request/response pipe.

    Failures that leave the pipe unusable or out of step raise
    :class:`ChannelLost`. Everything else fails only the request at hand.
    """

    _engine_target: str
    _backend_options: dict[str, object]
    _connection: Connection | None
    _process: multiprocessing.Process | None
    _next_request_id: int
    _is_closed: bool
    _lock: threading.RLock

    def __init__(self, engine_target: str, backend_options: dict[str, object] | None = None) -> None:
        """Initialize a channel.

        :param engine_target: Backend in ``module.path:ClassName`` format.
        :param backend_options: Keyword arguments for the backend constructor.
        """
        self._engine_target = engine_target
        if backend_options is None:
            self._backend_options = {}
        else:
            self._backend_options = dict(backend_options)
        self._connection = None
        self._process = None
        self._next_request_id = STARTUP_REQUEST_ID + 1
        self._is_closed = False
        self._lock = threading.RLock()

    @property
    def is_closed(self) -> bool:
        """Report whether this channel has been closed.

        :returns: ``True`` when the channel is closed.
        """
        with self._lock:
            return self._is_closed

    @property
    def worker_pid(self) -> int | None:
        """Return the worker process identifier.

        :returns: Process id, or ``None`` before start and after close.
        """
        process: multiprocessing.Process | None = self._process
        if process is None:
            return None
        return process.pid

    def start(self) -> None:
        """Start the worker process and wait for its backend to load.

        :raises ChannelLost: If the worker cannot be launched or the handshake breaks.
        :raises RemoteError: If the worker could not load the backend.
        """
        with self._lock:
            is_started: bool = self._connection is not None
            if is_started is True:
                return
            if self._is_closed is True:
                raise ChannelLost("Channel is closed")

            context = multiprocessing.get_context("spawn")
            parent_connection, child_connection = context.Pipe(duplex=True)
            process = context.Process(
                target=worker_entry,
                args=(child_connection, self._engine_target, self._backend_options),
            )
            process.daemon = True
            try:
                process.start()
            except Exception as exc:
                # spawn pickles the backend options here, so unpicklable options fail too
                parent_connection.close()
                child_connection.close()
                self._is_closed = True
                raise ChannelLost(f"Failed to launch engine worker for {self._engine_target}: {exc}") from exc
            child_connection.close()

            self._connection = parent_connection
            self._process = process
            logger.debug("Started engine worker pid=%s for %s", process.pid, self._engine_target)

            try:
                response: dict[str, object] = self._wait_for_response(expected_request_id=STARTUP_REQUEST_ID)
            except Exception:
                self.close()
                raise

            payload: object = response.get("payload")
            if isinstance(payload, dict) is False or payload.get("ready") is not True:
                self.close()
                raise ChannelLost("Startup payload missing ready marker")

    def _require_connection(self) -> Connection:
        """Return the active IPC connection.

        :returns: Active connection object.
        :raises ChannelLost: If channel is closed or not started.
        """
        if self._is_closed is True:
            raise ChannelLost("Channel is closed")

        connection: Connection | None = self._connection
        if connection is None:
            raise ChannelLost("Channel is not started")
        return connection

    def _raise_worker_error(self, payload: dict[str, object]) -> None:
        """Raise a local exception based on a worker error payload.

        :param payload: Error payload dictionary.
        :raises RequestRejected: If the worker refused the request as malformed.
        :raises RemoteError: For everything the backend raised.
        """
        error_type_obj: object = payload.get("error_type", "Exception")
        error_message_obj: object = payload.get("error_message", "")
        stacktrace_obj: object = payload.get("stacktrace", "")

        error_type: str = "Exception"
        if isinstance(error_type_obj, str) is True:
            error_type = error_type_obj
        error_message: str = ""
        if isinstance(error_message_obj, str) is True:
            error_message = error_message_obj
        stacktrace: str = ""
        if isinstance(stacktrace_obj, str) is True:
            stacktrace = stacktrace_obj

        if payload.get("rejected") is True:
            raise RequestRejected(f"Worker rejected request: {error_message}")
        raise RemoteError(error_type, error_message, stacktrace)

    def _wait_for_response(self, expected_request_id: int) -> dict[str, object]:
        """Wait for the worker response to one request.

        :param expected_request_id: Request id this side is waiting for.
        :returns: Response dictionary.
        :raises RequestRejected: If the worker refused the request.
        :raises RemoteError: If the worker reports a backend error.
        :raises ChannelLost: If the pipe broke or the response cannot be matched.
        """
        connection: Connection = self._require_connection()
        incoming: object
        try:
            incoming = connection.recv()
        except (EOFError, BrokenPipeError, OSError) as exc:
            raise ChannelLost("Failed to receive message from engine worker") from exc

        if isinstance(incoming, dict) is False:
            raise ChannelLost("Worker message must be a dict")

        message: dict[str, object] = incoming
        request_id_obj: object = message.get("request_id")
        if isinstance(request_id_obj, int) is False:
            raise ChannelLost("Worker response request_id must be an int")
        if request_id_obj != expected_request_id:
            raise ChannelLost(
                f"Unexpected response request_id {request_id_obj}; expected {expected_request_id}"
            )

        status_obj: object = message.get("status")
        if status_obj == "ok":
            return message
        if status_obj != "error":
            raise ChannelLost(f"Unknown worker response status: {status_obj!r}")

        payload_obj: object = message.get("payload")
        if isinstance(payload_obj, dict) is False:
            raise ChannelLost("Error response payload must be a dict")
        self._raise_worker_error(payload_obj)
        raise ChannelLost("Unreachable worker error state")

    def request(self, action: str, payload: dict[str, object] | None = None) -> dict[str, object]:
        """Send one request and return its response payload.

        :param action: Action name.
        :param payload: Action fields.
        :returns: Response payload dictionary.
        :raises RequestRejected: If the worker refused the request as malformed.
        :raises RemoteError: If the backend raised while handling the request.
        :raises ChannelLost: If the worker can no longer be reached.
        :raises ProtocolError: If a matched response carries no payload dict.
        """
        with self._lock:
            connection: Connection = self._require_connection()

            request_id: int = self._next_request_id
            self._next_request_id += 1

            request: dict[str, object] = {
                "request_id": request_id,
                "action": action,
            }
            if payload is not None:
                request.update(payload)

            logger.debug("-> %s #%d", action, request_id)
            try:
                connection.send(request)
            except (BrokenPipeError, EOFError, OSError) as exc:
                raise ChannelLost("Failed to send request to engine worker") from exc
            except Exception as exc:
                # the request could not be pickled; nothing reached the worker
                raise RequestRejected(f"Request {action} cannot be sent: {exc}") from exc

            response: dict[str, object] = self._wait_for_response(expected_request_id=request_id)
            response_payload: object = response.get("payload")
            if isinstance(response_payload, dict) is False:
                raise ProtocolError(f"{action} response payload must be a dict")
            return response_payload

    def close(self) -> None:
        """Shut the worker down and release the pipe. Safe to call repeatedly."""
        with self._lock:
            if self._is_closed is True:
                return
            self._is_closed = True

            connection: Connection | None = self._connection
            process: multiprocessing.Process | None = self._process
            self._connection = None
            self._process = None

            if connection is not None:
                try:
                    connection.send({"request_id": self._next_request_id, "action": "shutdown"})
                    self._next_request_id += 1
                    if connection.poll(_SHUTDOWN_JOIN_SECONDS) is True:
                        connection.recv()
                except (BrokenPipeError, EOFError, OSError):
                    pass

                try:
                    connection.close()
                except OSError:
                    pass

            if process is not None:
                process.join(timeout=_SHUTDOWN_JOIN_SECONDS)
                is_alive: bool = process.is_alive()
                if is_alive is True:
                    logger.warning("Engine worker pid=%s did not exit; terminating it", process.pid)
                    process.terminate()
                    process.join(timeout=_SHUTDOWN_JOIN_SECONDS)
            logger.debug("Closed engine channel for %s", self._engine_target)
