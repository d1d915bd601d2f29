"""Synchronous session protocol against one external engine."""

import atexit
import enum
import logging
import threading
from collections.abc import Sequence
from typing import NamedTuple

from matbridge.arrays import DynamicArray
from matbridge.arrays import Workspace
from matbridge.channel import EngineChannel
from matbridge.config import EngineConfig
from matbridge.errors import ChannelLost
from matbridge.errors import ConnectionFault
from matbridge.errors import MatbridgeError
from matbridge.errors import ProtocolError
from matbridge.marshal import ShapeKind
from matbridge.marshal import empty_value
from matbridge.marshal import encode
from matbridge.marshal import try_decode
from matbridge.outcome import Outcome

logger = logging.getLogger(__name__)


class SessionState(enum.Enum):
    """Lifecycle of an :class:`EngineSession`."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DEGRADED = "degraded"
    TERMINATED = "terminated"


class EvalOutput(NamedTuple):
    """Text captured while evaluating statements."""

    output: str
    error: str


def join_statements(statements: str | Sequence[str]) -> str:
    """Join statements into one script, one statement per line, in order.

    :param statements: One statement string or a sequence of them.
    :returns: Script text.
    """
    if isinstance(statements, str) is True:
        return statements
    return "".join(f"{statement}\n" for statement in statements)


def quote_literal(text: str) -> str:
    """Quote ``text`` as an engine character-vector literal.

    :param text: Raw text.
    :returns: Single-quoted literal with embedded quotes doubled.
    """
    escaped: str = text.replace("'", "''")
    return f"'{escaped}'"


def save_statement(file: str, variable_names: Sequence[str] | None = None) -> str:
    """Build the ``save`` statement for a file and optional variable names.

    :param file: Target file path.
    :param variable_names: Variables to save; all variables when omitted.
    :returns: Statement text.
    """
    literals: list[str] = [quote_literal(file)]
    if variable_names is not None:
        if isinstance(variable_names, str) is True:
            raise TypeError("variable_names must be a sequence of names, not a string")
        literals.extend(quote_literal(name) for name in variable_names)
    return f"save({', '.join(literals)})"


class EngineSession:
    """Own one connection to an engine and run calls against it one at a time.

    The connection lives in a worker process started by the constructor. If
    connecting fails the session is degraded: it stays constructed, and every
    operation returns a failed :class:`Outcome` instead of raising. Closing the
    session, leaving its ``with`` block or exiting the interpreter releases the
    connection exactly once.
    """

    _config: EngineConfig
    _shared_name: str | None
    _channel: EngineChannel
    _state: SessionState
    _fault: ConnectionFault | None
    _lock: threading.RLock

    def __init__(self, shared_name: str | None = None, config: EngineConfig | None = None) -> None:
        """Connect to an engine.

        :param shared_name: Name of a shared engine instance. ``None`` connects
            to any shared instance or starts a new one.
        :param config: Engine settings, :meth:`EngineConfig.from_env` when omitted.
        """
        if config is None:
            config = EngineConfig.from_env()
        self._config = config
        self._shared_name = shared_name
        self._channel = EngineChannel(config.engine_target, config.backend_options)
        self._state = SessionState.DISCONNECTED
        self._fault = None
        self._lock = threading.RLock()
        self._connect()

    def _connect(self) -> None:
        """Start the worker and connect its backend, degrading on failure."""
        self._state = SessionState.CONNECTING
        if self._shared_name is None:
            logger.info("Starting up engine session via %s", self._config.engine_target)
        else:
            logger.info("Connecting to shared engine session %r", self._shared_name)

        try:
            self._channel.start()
            self._channel.request("connect", {"shared_name": self._shared_name})
        except (MatbridgeError, OSError) as exc:
            target: str = "an engine session" if self._shared_name is None else f"shared engine session {self._shared_name!r}"
            fault: ConnectionFault = ConnectionFault(f"Unable to connect to {target}: {exc}")
            fault.__cause__ = exc
            logger.error("%s", fault)
            self._channel.close()
            self._fault = fault
            self._state = SessionState.DEGRADED
            return

        self._state = SessionState.CONNECTED
        atexit.register(self.close)

    @staticmethod
    def discover(config: EngineConfig | None = None) -> Outcome[list[str]]:
        """List the names of reachable shared engine instances.

        :param config: Engine settings, :meth:`EngineConfig.from_env` when omitted.
        :returns: Outcome holding the instance names.
        """
        if config is None:
            config = EngineConfig.from_env()
        channel: EngineChannel = EngineChannel(config.engine_target, config.backend_options)
        try:
            channel.start()
            payload: dict[str, object] = channel.request("find")
            names: object = payload.get("names")
            if isinstance(names, list) is False or all(isinstance(name, str) for name in names) is False:
                raise ProtocolError("find response must list instance names")
            return Outcome.success(list(names))
        except (MatbridgeError, OSError) as exc:
            logger.error("Unable to discover shared engine sessions: %s", exc)
            fault: MatbridgeError = exc if isinstance(exc, MatbridgeError) else ConnectionFault(str(exc))
            return Outcome.failure([], fault)
        finally:
            channel.close()

    @property
    def state(self) -> SessionState:
        """Return the lifecycle state.

        :returns: Current state.
        """
        return self._state

    @property
    def is_usable(self) -> bool:
        """Report whether calls can reach the engine.

        :returns: ``True`` while connected.
        """
        return self._state is SessionState.CONNECTED

    @property
    def fault(self) -> ConnectionFault | None:
        """Return the fault that degraded this session.

        :returns: Connection fault, or ``None`` while the session is healthy.
        """
        return self._fault

    @property
    def shared_name(self) -> str | None:
        """Return the shared instance name this session was asked to join.

        :returns: Shared instance name or ``None``.
        """
        return self._shared_name

    @property
    def config(self) -> EngineConfig:
        """Return the engine settings.

        :returns: Engine settings.
        """
        return self._config

    def _unusable_fault(self) -> ConnectionFault | None:
        """Return the fault every call reports while the session is unusable.

        :returns: Connection fault, or ``None`` when connected.
        """
        if self._state is SessionState.TERMINATED:
            return ConnectionFault("Session is closed")
        if self._state is SessionState.DEGRADED:
            if self._fault is not None:
                return self._fault
            return ConnectionFault("Session is not connected")
        return None

    def _request(self, action: str, payload: dict[str, object]) -> dict[str, object]:
        """Run one round trip, degrading the session if the worker is lost.

        :param action: Worker action.
        :param payload: Action fields.
        :returns: Response payload.
        :raises ConnectionFault: If the session is unusable or its worker was lost.
        :raises RequestRejected: If the worker refused this request as malformed.
        :raises RemoteError: If the backend failed this call.
        """
        with self._lock:
            unusable: ConnectionFault | None = self._unusable_fault()
            if unusable is not None:
                raise unusable

            try:
                return self._channel.request(action, payload)
            except ChannelLost as exc:
                fault: ConnectionFault = ConnectionFault(f"Lost connection to the engine worker: {exc}")
                logger.error("%s", fault)
                self._fault = fault
                self._state = SessionState.DEGRADED
                self._channel.close()
                raise fault from exc

    def get_variable(
        self,
        name: str,
        workspace: Workspace = Workspace.BASE,
        kind: ShapeKind | str = ShapeKind.RAW,
    ) -> Outcome[object]:
        """Read a workspace variable.

        :param name: Variable name.
        :param workspace: Variable scope.
        :param kind: Shape to decode the value into; ``RAW`` keeps the engine array.
        :returns: Outcome holding the decoded value.
        """
        try:
            payload: dict[str, object] = self._request(
                "get_variable",
                {"name": name, "workspace": workspace.value},
            )
            value: object = payload.get("value")
            if isinstance(value, DynamicArray) is False:
                raise ProtocolError("get_variable response must carry a DynamicArray")
        except MatbridgeError as exc:
            logger.warning("Unable to get engine variable %r: %s", name, exc)
            return Outcome.failure(empty_value(kind), exc)

        decoded: Outcome[object] = try_decode(value, kind)
        if decoded.ok is False:
            logger.warning("Engine variable %r: %s", name, decoded.fault)
        return decoded

    def set_variable(
        self,
        name: str,
        value: object,
        workspace: Workspace = Workspace.BASE,
    ) -> Outcome[None]:
        """Write a workspace variable.

        :param name: Variable name.
        :param value: Engine array, or a scalar, vector or matrix to encode.
        :param workspace: Variable scope.
        :returns: Outcome without value.
        :raises TypeError: If ``value`` cannot be encoded.
        """
        array: DynamicArray = encode(value)
        try:
            self._request(
                "set_variable",
                {"name": name, "value": array, "workspace": workspace.value},
            )
        except MatbridgeError as exc:
            logger.warning("Unable to set engine variable %r: %s", name, exc)
            return Outcome.failure(None, exc)
        return Outcome.success(None)

    def evaluate(self, statements: str | Sequence[str]) -> Outcome[EvalOutput]:
        """Execute script statements and capture their output and error text.

        Script errors come back as error text, not as a fault.

        :param statements: One statement string or a sequence run in order.
        :returns: Outcome holding ``(output, error)``.
        """
        statement: str = join_statements(statements)
        try:
            payload: dict[str, object] = self._request("evaluate", {"statement": statement})
            output: object = payload.get("output")
            error: object = payload.get("error")
            if isinstance(output, str) is False or isinstance(error, str) is False:
                raise ProtocolError("evaluate response must carry output and error text")
        except MatbridgeError as exc:
            logger.warning("Unable to evaluate engine statement: %s", exc)
            return Outcome.failure(EvalOutput("", ""), exc)
        return Outcome.success(EvalOutput(output, error), output, error)

    def evaluate_text(self, statements: str | Sequence[str]) -> str:
        """Execute statements and return the error text, or the output when there is none.

        :param statements: One statement string or a sequence run in order.
        :returns: Error text when non-empty, otherwise output text.
        """
        result: EvalOutput = self.evaluate(statements).value
        if len(result.error) > 0:
            return result.error
        return result.output

    def invoke(
        self,
        function_name: str,
        *args: object,
        num_returns: int | None = None,
        kind: ShapeKind | str = ShapeKind.RAW,
    ) -> Outcome[object]:
        """Call an engine function with positional arguments.

        :param function_name: Function name.
        :param args: Engine arrays, or scalars, vectors and matrices to encode.
        :param num_returns: Number of return values to request. ``None`` requests
            one and returns it bare; an integer returns a list.
        :param kind: Shape to decode every returned value into.
        :returns: Outcome holding the decoded value or list of values.
        :raises TypeError: If an argument cannot be encoded.
        :raises ValueError: If ``num_returns`` is negative.
        """
        if num_returns is not None and num_returns < 0:
            raise ValueError("num_returns must be non-negative")
        encoded_args: list[DynamicArray] = [encode(arg) for arg in args]
        requested: int = 1 if num_returns is None else num_returns
        failed_value: object = empty_value(kind) if num_returns is None else []

        try:
            payload: dict[str, object] = self._request(
                "invoke",
                {
                    "function_name": function_name,
                    "num_returns": requested,
                    "args": encoded_args,
                },
            )
            values: object = payload.get("values")
            output: object = payload.get("output")
            error: object = payload.get("error")
            if isinstance(values, list) is False or all(isinstance(value, DynamicArray) for value in values) is False:
                raise ProtocolError("invoke response must carry a list of DynamicArray values")
            if isinstance(output, str) is False or isinstance(error, str) is False:
                raise ProtocolError("invoke response must carry output and error text")
        except MatbridgeError as exc:
            logger.warning("Unable to invoke engine function %r: %s", function_name, exc)
            return Outcome.failure(failed_value, exc)

        if len(error) > 0:
            logger.debug("Engine function %r reported: %s", function_name, error.strip())

        if num_returns is None:
            if len(values) == 0:
                return Outcome(empty_value(kind), None, output, error)
            decoded: Outcome[object] = try_decode(values[0], kind)
            if decoded.ok is False:
                logger.warning("Result of %r: %s", function_name, decoded.fault)
            return Outcome(decoded.value, decoded.fault, output, error)

        decoded_values: list[object] = []
        first_fault: MatbridgeError | None = None
        for value in values:
            item: Outcome[object] = try_decode(value, kind)
            decoded_values.append(item.value)
            if item.ok is False and first_fault is None:
                logger.warning("Result of %r: %s", function_name, item.fault)
                first_fault = item.fault
        return Outcome(decoded_values, first_fault, output, error)

    def plot(self, value: object, hold_on: bool = False) -> Outcome[None]:
        """Plot a vector or matrix, optionally holding the current figure.

        :param value: Vector or matrix to plot.
        :param hold_on: Run ``hold on`` after plotting.
        :returns: Outcome without value, carrying the captured text.
        """
        plotted: Outcome[object] = self.invoke("plot", value, num_returns=0)
        if plotted.ok is False or hold_on is False:
            return Outcome(None, plotted.fault, plotted.output, plotted.error_output)

        held: Outcome[EvalOutput] = self.evaluate("hold on")
        return Outcome(
            None,
            held.fault,
            plotted.output + held.output,
            plotted.error_output + held.error_output,
        )

    def save(self, file: str, variable_names: Sequence[str] | None = None) -> Outcome[EvalOutput]:
        """Save workspace variables to a file inside the engine.

        :param file: Target file path, as seen by the engine.
        :param variable_names: Variables to save; all variables when omitted.
        :returns: Outcome of evaluating the ``save`` statement.
        """
        return self.evaluate(save_statement(file, variable_names))

    def close(self) -> None:
        """Release the engine connection. Safe to call repeatedly."""
        with self._lock:
            if self._state is SessionState.TERMINATED:
                return
            self._channel.close()
            self._state = SessionState.TERMINATED
        atexit.unregister(self.close)
        logger.info("Engine session terminated")

    def __enter__(self) -> "EngineSession":
        return self

    def __exit__(self, exc_type: object, exc_value: object, exc_traceback: object) -> None:
        self.close()

    def __copy__(self) -> "EngineSession":
        raise TypeError("EngineSession owns its engine connection and cannot be copied")

    def __deepcopy__(self, memo: dict[int, object]) -> "EngineSession":
        raise TypeError("EngineSession owns its engine connection and cannot be copied")

    def __reduce__(self) -> object:
        raise TypeError("EngineSession cannot be pickled")

    def __repr__(self) -> str:
        return f"EngineSession(state={self._state.value}, target={self._config.engine_target!r})"
