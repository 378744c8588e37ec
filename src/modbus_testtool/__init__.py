"""modbus-testtool: Modbus master/slave test utility with a typed register codec and virtual device store."""

__version__ = "0.1.0"

from .codec import decode, decode_block, decode_value, encode, primary_indices, validate
from .config import ReadRequest, RtuConfig, SlaveConfig, TcpConfig, WriteRequest
from .errors import (
    ModbusToolError,
    ProbeFailure,
    RegisterRangeError,
    TransportError,
    UnsupportedWriteError,
    ValueValidationError,
)
from .oplog import OperationLog
from .store import VirtualDeviceStore
from .types import ConnectionState, DataType, Endianness, ModbusTable, ReadFunction, ReadResult, WriteFunction
from .vector import RequestVector

__all__ = [
    "__version__",
    "decode",
    "decode_block",
    "decode_value",
    "encode",
    "primary_indices",
    "validate",
    "ReadRequest",
    "RtuConfig",
    "SlaveConfig",
    "TcpConfig",
    "WriteRequest",
    "ModbusToolError",
    "ProbeFailure",
    "RegisterRangeError",
    "TransportError",
    "UnsupportedWriteError",
    "ValueValidationError",
    "OperationLog",
    "VirtualDeviceStore",
    "ConnectionState",
    "DataType",
    "Endianness",
    "ModbusTable",
    "ReadFunction",
    "ReadResult",
    "WriteFunction",
    "RequestVector",
]
