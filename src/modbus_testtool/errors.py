"""Clear exceptions for modbus-testtool: rejected values, address spans and transport failures."""

MAX_MESSAGE_LENGTH = 100


def cap_message(message: str, limit: int = MAX_MESSAGE_LENGTH) -> str:
    """Shorten a message to at most ``limit`` characters, ending with '...' when cut."""
    if len(message) > limit:
        return message[: limit - 3] + "..."
    return message


class ModbusToolError(Exception):
    """Base exception for modbus-testtool."""

    pass


class ValueValidationError(ModbusToolError):
    """Raised when input text is not a valid value for its declared data type."""

    def __init__(self, text: str, data_type: str, message: str | None = None) -> None:
        self.text = text
        self.data_type = data_type
        self._msg = message or f"Value {text!r} is out of range for {data_type}"
        super().__init__(self._msg)


class RegisterRangeError(ModbusToolError):
    """Raised when an address, or a multi-register span starting at it, leaves the address space."""

    def __init__(self, address: int, data_type: str | None = None, message: str | None = None) -> None:
        self.address = address
        self.data_type = data_type
        self._msg = message or f"Address {address} is out of range"
        super().__init__(self._msg)


class UnsupportedWriteError(ModbusToolError):
    """Raised when a data type is written to a register space that cannot hold it."""

    def __init__(self, data_type: str, table: str) -> None:
        self.data_type = data_type
        self.table = table
        super().__init__(f"{data_type} values cannot be written to {table}")


class TransportError(ModbusToolError):
    """Raised when connect/read/write against the remote device fails (wraps pymodbus errors)."""

    def __init__(
        self,
        message: str,
        *,
        address: int | None = None,
        function: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        self.address = address
        self.function = function
        self.cause = cause
        super().__init__(cap_message(message))


class ProbeFailure(TransportError):
    """Raised when the periodic liveness read fails; the session treats it as a disconnect."""

    pass
