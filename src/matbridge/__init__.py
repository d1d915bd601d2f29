"""Public package API for matbridge."""

from matbridge.arrays import DynamicArray
from matbridge.arrays import ElementType
from matbridge.arrays import Workspace
from matbridge.config import EngineConfig
from matbridge.config import configure_logging
from matbridge.errors import ChannelLost
from matbridge.errors import ConnectionFault
from matbridge.errors import MatbridgeError
from matbridge.errors import ProtocolError
from matbridge.errors import RemoteError
from matbridge.errors import RequestRejected
from matbridge.errors import ShapeMismatch
from matbridge.errors import TransportFault
from matbridge.layout import StorageOrder
from matbridge.layout import from_column_major
from matbridge.layout import native_order
from matbridge.layout import to_column_major
from matbridge.marshal import ShapeKind
from matbridge.marshal import decode
from matbridge.marshal import decode_batch
from matbridge.marshal import empty_value
from matbridge.marshal import encode
from matbridge.marshal import encode_batch
from matbridge.marshal import kind_of
from matbridge.marshal import try_decode
from matbridge.outcome import Outcome
from matbridge.session import EngineSession
from matbridge.session import EvalOutput
from matbridge.session import SessionState

__all__: list[str] = [
    "ChannelLost",
    "ConnectionFault",
    "DynamicArray",
    "ElementType",
    "EngineConfig",
    "EngineSession",
    "EvalOutput",
    "MatbridgeError",
    "Outcome",
    "ProtocolError",
    "RemoteError",
    "RequestRejected",
    "SessionState",
    "ShapeKind",
    "ShapeMismatch",
    "StorageOrder",
    "TransportFault",
    "Workspace",
    "configure_logging",
    "decode",
    "decode_batch",
    "empty_value",
    "encode",
    "encode_batch",
    "from_column_major",
    "kind_of",
    "native_order",
    "to_column_major",
    "try_decode",
]
