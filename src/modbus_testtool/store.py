"""VirtualDeviceStore: the simulated slave's coils, holding registers and input registers."""

import logging

from . import codec
from .errors import RegisterRangeError, UnsupportedWriteError, ValueValidationError
from .types import DataType, Endianness, ModbusTable

logger = logging.getLogger(__name__)

ADDRESS_SPACE = 65536
MAX_ADDRESS = ADDRESS_SPACE - 1

_WORD_TABLES = (ModbusTable.HOLDING_REGISTER, ModbusTable.INPUT_REGISTER)


def _in_range(address: int) -> bool:
    return 0 <= address <= MAX_ADDRESS


class VirtualDeviceStore:
    """
    Three independent 65536-slot spaces addressed 0..65535.

    Discrete inputs are served from the coil space. Reads outside the address
    space return False/0; writes outside it raise RegisterRangeError. Input
    registers change only through write_typed(); remote requests cannot reach
    them.
    """

    def __init__(self) -> None:
        self.coils: list[bool] = [False] * ADDRESS_SPACE
        self.holding_registers: list[int] = [0] * ADDRESS_SPACE
        self.input_registers: list[int] = [0] * ADDRESS_SPACE

    def reset(self) -> None:
        """Zero every space."""
        self.coils[:] = [False] * ADDRESS_SPACE
        self.holding_registers[:] = [0] * ADDRESS_SPACE
        self.input_registers[:] = [0] * ADDRESS_SPACE

    # Single-slot reads

    def get_coil(self, address: int) -> bool:
        return self.coils[address] if _in_range(address) else False

    def get_discrete_input(self, address: int) -> bool:
        # Shares the coil space
        return self.get_coil(address)

    def get_holding_register(self, address: int) -> int:
        return self.holding_registers[address] if _in_range(address) else 0

    def get_input_register(self, address: int) -> int:
        return self.input_registers[address] if _in_range(address) else 0

    # Block reads (table refresh, server data blocks)

    def read_coils(self, address: int, count: int) -> list[bool]:
        return [self.get_coil(address + i) for i in range(count)]

    def read_discrete_inputs(self, address: int, count: int) -> list[bool]:
        return [self.get_discrete_input(address + i) for i in range(count)]

    def read_holding_registers(self, address: int, count: int) -> list[int]:
        return [self.get_holding_register(address + i) for i in range(count)]

    def read_input_registers(self, address: int, count: int) -> list[int]:
        return [self.get_input_register(address + i) for i in range(count)]

    def read(self, table: ModbusTable, address: int, count: int) -> list[bool] | list[int]:
        """Block read from the named space."""
        reader = {
            ModbusTable.COIL: self.read_coils,
            ModbusTable.DISCRETE_INPUT: self.read_discrete_inputs,
            ModbusTable.HOLDING_REGISTER: self.read_holding_registers,
            ModbusTable.INPUT_REGISTER: self.read_input_registers,
        }[ModbusTable(table)]
        return reader(address, count)

    # Remote write path

    def set_coil(self, address: int, value: bool) -> None:
        if not _in_range(address):
            raise RegisterRangeError(address)
        self.coils[address] = bool(value)

    def set_register(self, address: int, value: int) -> None:
        """Write one holding register."""
        if not _in_range(address):
            raise RegisterRangeError(address)
        if not 0 <= int(value) <= codec.WORD_MAX:
            raise ValueValidationError(str(value), DataType.UINT16.value)
        self.holding_registers[address] = int(value)

    # Local write path

    def write_typed(
        self,
        address: int,
        data_type: DataType,
        value: str | bool | int | float,
        endianness: Endianness = Endianness.BIG,
        table: ModbusTable | None = None,
    ) -> list[int]:
        """
        Validate and write a typed value, returning the words written.

        Bool goes to the coil space. Other types go to holding registers unless
        ``table`` names the input-register space, which accepts only
        single-register types. Multi-register values occupy consecutive
        addresses and need the whole span inside 0..65535. Nothing is written
        when a check fails.
        """
        data_type = DataType(data_type)
        target = self._target_table(data_type, table)
        text = value if isinstance(value, str) else str(value)

        if not _in_range(address):
            raise RegisterRangeError(address, data_type.value, f"Address error: {address} (expected 0-{MAX_ADDRESS})")
        span = data_type.registers
        if address + span - 1 > MAX_ADDRESS:
            raise RegisterRangeError(
                address,
                data_type.value,
                f"Insufficient contiguous registers for {data_type.value} at {address} (needs {span})",
            )
        codec.require_valid(text, data_type)

        words = codec.encode(text, data_type, endianness)
        if target == ModbusTable.COIL:
            self.coils[address] = bool(words[0])
        else:
            space = self.holding_registers if target == ModbusTable.HOLDING_REGISTER else self.input_registers
            space[address : address + span] = words
        logger.debug("write_typed %s %s[%d] = %r -> %s", data_type.value, target.value, address, text, words)
        return words

    @staticmethod
    def _target_table(data_type: DataType, table: ModbusTable | None) -> ModbusTable:
        if data_type == DataType.BOOL:
            if table not in (None, ModbusTable.COIL):
                raise UnsupportedWriteError(data_type.value, ModbusTable(table).value)
            return ModbusTable.COIL
        if table is None:
            return ModbusTable.HOLDING_REGISTER
        table = ModbusTable(table)
        if table not in _WORD_TABLES:
            raise UnsupportedWriteError(data_type.value, table.value)
        if table == ModbusTable.INPUT_REGISTER and data_type.registers > 1:
            raise UnsupportedWriteError(data_type.value, table.value)
        return table
