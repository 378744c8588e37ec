"""Validated configuration: TCP/RTU connections, slave sessions, and master read/write requests."""

from dataclasses import dataclass
from enum import Enum

from .types import DataType, Endianness, ReadFunction, WriteFunction

BAUD_RATES = (9600, 19200, 38400, 57600, 115200)
DATA_BITS = (7, 8)
STOP_BITS = (1, 2)

MAX_ADDRESS = 65535
MAX_READ_LENGTH = 125
MIN_UNIT_ID = 1
MAX_UNIT_ID = 247

AUTO_POLL_MIN_MS = 100
AUTO_POLL_MAX_MS = 10000
LIVENESS_INTERVAL_MS = 5000


class Parity(str, Enum):
    NONE = "none"
    EVEN = "even"
    ODD = "odd"
    MARK = "mark"
    SPACE = "space"

    @property
    def code(self) -> str:
        """pyserial parity letter."""
        return self.value[0].upper()


def _check_port(port: int) -> None:
    if not 1 <= port <= 65535:
        raise ValueError(f"port must be in 1-65535, got {port}")


def _check_address(address: int) -> None:
    if not 0 <= address <= MAX_ADDRESS:
        raise ValueError(f"address must be in 0-{MAX_ADDRESS}, got {address}")


def _check_unit_id(unit_id: int, low: int = 0) -> None:
    if not low <= unit_id <= MAX_UNIT_ID:
        raise ValueError(f"unit_id must be in {low}-{MAX_UNIT_ID}, got {unit_id}")


@dataclass(frozen=True)
class TcpConfig:
    host: str = "127.0.0.1"
    port: int = 502

    def __post_init__(self) -> None:
        if not self.host:
            raise ValueError("host cannot be empty")
        _check_port(self.port)

    def describe(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class RtuConfig:
    serial_port: str
    baud_rate: int = 9600
    data_bits: int = 8
    stop_bits: int = 1
    parity: Parity = Parity.NONE

    def __post_init__(self) -> None:
        if not self.serial_port:
            raise ValueError("serial_port cannot be empty")
        if self.baud_rate not in BAUD_RATES:
            raise ValueError(f"baud_rate must be one of {BAUD_RATES}, got {self.baud_rate}")
        if self.data_bits not in DATA_BITS:
            raise ValueError(f"data_bits must be one of {DATA_BITS}, got {self.data_bits}")
        if self.stop_bits not in STOP_BITS:
            raise ValueError(f"stop_bits must be one of {STOP_BITS}, got {self.stop_bits}")
        # Accept plain strings such as "even"
        object.__setattr__(self, "parity", Parity(self.parity))

    def describe(self) -> str:
        return f"{self.serial_port} {self.baud_rate} {self.data_bits}{self.parity.code}{self.stop_bits}"


ConnectionConfig = TcpConfig | RtuConfig


@dataclass(frozen=True)
class SlaveConfig:
    """Simulated slave: TCP listen port and the unit id it answers to."""

    port: int = 502
    unit_id: int = 1
    host: str = "0.0.0.0"

    def __post_init__(self) -> None:
        _check_port(self.port)
        _check_unit_id(self.unit_id, low=MIN_UNIT_ID)


@dataclass(frozen=True)
class ReadRequest:
    unit_id: int = 1
    function: ReadFunction = ReadFunction.HOLDING_REGISTERS
    address: int = 0
    length: int = 10
    data_type: DataType = DataType.UINT16
    endianness: Endianness = Endianness.BIG
    precision: int = 4

    def __post_init__(self) -> None:
        _check_unit_id(self.unit_id)
        _check_address(self.address)
        if not 1 <= self.length <= MAX_READ_LENGTH:
            raise ValueError(f"length must be in 1-{MAX_READ_LENGTH}, got {self.length}")
        if self.address + self.length - 1 > MAX_ADDRESS:
            raise ValueError(f"read of {self.length} at {self.address} runs past address {MAX_ADDRESS}")
        if self.precision < 0:
            raise ValueError(f"precision must be >= 0, got {self.precision}")
        object.__setattr__(self, "function", ReadFunction(self.function))
        object.__setattr__(self, "data_type", DataType(self.data_type))
        object.__setattr__(self, "endianness", Endianness(self.endianness))


@dataclass(frozen=True)
class WriteRequest:
    value: str
    unit_id: int = 1
    function: WriteFunction = WriteFunction.REGISTER
    address: int = 0
    data_type: DataType = DataType.UINT16
    endianness: Endianness = Endianness.BIG

    def __post_init__(self) -> None:
        _check_unit_id(self.unit_id)
        _check_address(self.address)
        object.__setattr__(self, "function", WriteFunction(self.function))
        object.__setattr__(self, "data_type", DataType(self.data_type))
        object.__setattr__(self, "endianness", Endianness(self.endianness))


def check_poll_interval(interval_ms: int) -> int:
    if not AUTO_POLL_MIN_MS <= interval_ms <= AUTO_POLL_MAX_MS:
        raise ValueError(f"poll interval must be in {AUTO_POLL_MIN_MS}-{AUTO_POLL_MAX_MS} ms, got {interval_ms}")
    return interval_ms
