"""Core data model: data types, register order, Modbus tables, functions and read results."""

from dataclasses import dataclass, field
from enum import Enum


class DataType(str, Enum):
    """Typed interpretation of one or more consecutive 16-bit registers."""

    BOOL = "Bool"
    INT16 = "Int16"
    UINT16 = "UInt16"
    INT32 = "Int32"
    UINT32 = "UInt32"
    FLOAT32 = "Float32"
    FLOAT64 = "Float64"

    @property
    def registers(self) -> int:
        """Number of 16-bit registers a value of this type occupies."""
        return _REGISTER_COUNT[self]

    @property
    def is_float(self) -> bool:
        return self in (DataType.FLOAT32, DataType.FLOAT64)


_REGISTER_COUNT: dict[DataType, int] = {
    DataType.BOOL: 1,
    DataType.INT16: 1,
    DataType.UINT16: 1,
    DataType.INT32: 2,
    DataType.UINT32: 2,
    DataType.FLOAT32: 2,
    DataType.FLOAT64: 4,
}


class Endianness(str, Enum):
    """Register order of multi-register values: big puts the high-order register first."""

    BIG = "big"
    LITTLE = "little"


class ModbusTable(str, Enum):
    """Modbus data spaces."""

    COIL = "coil"
    DISCRETE_INPUT = "discrete_input"
    INPUT_REGISTER = "input_register"
    HOLDING_REGISTER = "holding_register"


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


class ReadFunction(str, Enum):
    """Master read requests (FC03, FC04, FC01, FC02)."""

    HOLDING_REGISTERS = "holding_registers"
    INPUT_REGISTERS = "input_registers"
    COILS = "coils"
    DISCRETE_INPUTS = "discrete_inputs"

    @property
    def code(self) -> int:
        return {
            ReadFunction.HOLDING_REGISTERS: 3,
            ReadFunction.INPUT_REGISTERS: 4,
            ReadFunction.COILS: 1,
            ReadFunction.DISCRETE_INPUTS: 2,
        }[self]


class WriteFunction(str, Enum):
    """Master write requests (FC06, FC16, FC05, FC15)."""

    REGISTER = "register"
    REGISTERS = "registers"
    COIL = "coil"
    COILS = "coils"

    @property
    def code(self) -> int:
        return {
            WriteFunction.REGISTER: 6,
            WriteFunction.REGISTERS: 16,
            WriteFunction.COIL: 5,
            WriteFunction.COILS: 15,
        }[self]


@dataclass(frozen=True)
class ReadResult:
    """Result of a master read: raw data plus one display string per address slot."""

    address: int
    data: list[int | bool]
    data_type: DataType
    endianness: Endianness
    cells: list[str] = field(default_factory=list)
    summary: str = ""

    def rows(self) -> list[tuple[int, str]]:
        """(address, display text) pairs for a table view."""
        return [(self.address + i, text) for i, text in enumerate(self.cells)]
