"""Typed register codec: 16-bit register words <-> Bool/Int/UInt/Float values, with range validation."""

import math
import struct
from typing import Sequence

from .errors import RegisterRangeError, ValueValidationError
from .types import DataType, Endianness

WORD_MAX = 0xFFFF

PRECISION_COARSE = 4
PRECISION_FINE = 6

# Placeholder for the second and later registers of a multi-register value
PLACEHOLDER = "-"
# Primary slot whose value runs past the end of the available words
MISSING = "--"

FLOAT32_LIMIT = 3.4028235e38
FLOAT64_LIMIT = 1.7976931348623157e308
# Largest finite single-precision value; struct refuses anything that rounds past it
_FLOAT32_MAX = 3.4028234663852886e38

INTEGER_RANGES: dict[DataType, tuple[int, int]] = {
    DataType.INT16: (-32768, 32767),
    DataType.UINT16: (0, 65535),
    DataType.INT32: (-2147483648, 2147483647),
    DataType.UINT32: (0, 4294967295),
}

_BOOL_TEXT = frozenset({"0", "1", "true", "false"})

# struct codes for the big-endian byte stream after register reordering
_STRUCT_CODE: dict[DataType, str] = {
    DataType.INT16: "h",
    DataType.UINT16: "H",
    DataType.INT32: "i",
    DataType.UINT32: "I",
    DataType.FLOAT32: "f",
    DataType.FLOAT64: "d",
}


def registers_needed(data_type: DataType) -> int:
    return DataType(data_type).registers


def order_words(words: Sequence[int], endianness: Endianness) -> list[int]:
    """
    Return words high-order register first.

    Big endian sequences are already in that order; little endian sequences are
    reversed (register swap for 2-word values, full reversal for 4-word values).
    The operation is its own inverse.
    """
    ordered = [int(w) for w in words]
    if Endianness(endianness) == Endianness.LITTLE:
        ordered.reverse()
    return ordered


def _check_words(words: Sequence[int]) -> None:
    for w in words:
        if not 0 <= int(w) <= WORD_MAX:
            raise ValueError(f"Register word out of range 0-65535: {w}")


def decode_value(
    words: Sequence[int],
    data_type: DataType,
    endianness: Endianness = Endianness.BIG,
) -> bool | int | float:
    """
    Decode the leading register(s) of ``words`` as ``data_type``.

    Raises RegisterRangeError when fewer words are given than the type needs.
    """
    data_type = DataType(data_type)
    needed = data_type.registers
    if len(words) < needed:
        raise RegisterRangeError(
            0,
            data_type.value,
            f"{data_type.value} needs {needed} registers, got {len(words)}",
        )
    head = list(words[:needed])
    _check_words(head)

    if data_type == DataType.BOOL:
        return head[0] != 0

    ordered = order_words(head, endianness)
    raw = struct.pack(f">{needed}H", *ordered)
    (value,) = struct.unpack(f">{_STRUCT_CODE[data_type]}", raw)
    return value


def format_value(value: bool | int | float, data_type: DataType, precision: int = PRECISION_COARSE) -> str:
    """Format a decoded value: bools as true/false, integers base-10, floats fixed-point."""
    if precision < 0:
        raise ValueError(f"precision must be >= 0, got {precision}")
    if DataType(data_type) == DataType.BOOL or isinstance(value, bool):
        return "true" if value else "false"
    if DataType(data_type).is_float:
        return f"{float(value):.{precision}f}"
    return str(int(value))


def decode(
    words: Sequence[int],
    data_type: DataType,
    endianness: Endianness = Endianness.BIG,
    precision: int = PRECISION_COARSE,
) -> str:
    """Decode words to the display string shown to the operator."""
    return format_value(decode_value(words, data_type, endianness), data_type, precision)


def is_primary(index: int, data_type: DataType) -> bool:
    """True when slot ``index`` of a contiguous block starts a value (is not a trailing register)."""
    return index % registers_needed(data_type) == 0


def primary_indices(count: int, data_type: DataType) -> list[int]:
    return list(range(0, count, registers_needed(data_type)))


def decode_block(
    words: Sequence[int],
    data_type: DataType,
    endianness: Endianness = Endianness.BIG,
    precision: int = PRECISION_COARSE,
) -> list[str]:
    """
    Decode a contiguous block into one display string per slot.

    Trailing registers of multi-register values render as PLACEHOLDER and are
    never decoded on their own. A value cut off by the end of the block renders
    as MISSING.
    """
    needed = registers_needed(data_type)
    cells: list[str] = []
    for i in range(len(words)):
        if not is_primary(i, data_type):
            cells.append(PLACEHOLDER)
        elif i + needed > len(words):
            cells.append(MISSING)
        else:
            cells.append(decode(words[i : i + needed], data_type, endianness, precision))
    return cells


def summarize(
    words: Sequence[int],
    data_type: DataType,
    endianness: Endianness = Endianness.BIG,
    precision: int = PRECISION_COARSE,
) -> str:
    """Comma-joined decoded values of a block (one per complete value), for the operation log."""
    if not words:
        return "no data"
    values = [
        cell
        for cell in decode_block(words, data_type, endianness, precision)
        if cell not in (PLACEHOLDER, MISSING)
    ]
    return ", ".join(values) if values else "no data"


def _parse_float(text: str) -> float:
    s = text.strip()
    # float() and int() would accept digit separators such as "1_000"
    if "_" in s:
        raise ValueError(f"Not a number: {text!r}")
    return float(s)


def _parse_int(text: str) -> int:
    """Parse integer text (decimal, 0x hex, or an integral float such as '100.0')."""
    s = text.strip()
    if "_" in s:
        raise ValueError(f"Not an integer: {text!r}")
    if s.lower().lstrip("+-").startswith("0x"):
        return int(s, 16)
    try:
        return int(s)
    except ValueError:
        f = _parse_float(s)
        if not math.isfinite(f) or not f.is_integer():
            raise ValueError(f"Not an integer: {text!r}") from None
        return int(f)


def _parse_number(text: str) -> int | float:
    try:
        return _parse_int(text)
    except ValueError:
        return _parse_float(text)


def _round_half_up(value: int | float) -> int:
    if isinstance(value, int):
        return value
    return math.floor(value + 0.5)


def validate(text: str, data_type: DataType) -> bool:
    """
    Return True when ``text`` is a valid value of ``data_type``.

    - Empty or whitespace-only text is rejected.
    - Bool: 0, 1, true, false (case-insensitive).
    - Integer types: an integer within the type's range.
    - Float32/Float64: a finite float within the type's magnitude limit.

    This is the gate every write path runs before encode().
    """
    if text is None:
        return False
    s = str(text).strip()
    if not s:
        return False

    data_type = DataType(data_type)
    if data_type == DataType.BOOL:
        return s.lower() in _BOOL_TEXT

    if data_type in INTEGER_RANGES:
        try:
            num = _parse_int(s)
        except ValueError:
            return False
        low, high = INTEGER_RANGES[data_type]
        return low <= num <= high

    try:
        f = _parse_float(s)
    except ValueError:
        return False
    if not math.isfinite(f):
        return False
    limit = FLOAT32_LIMIT if data_type == DataType.FLOAT32 else FLOAT64_LIMIT
    return abs(f) <= limit


def require_valid(text: str, data_type: DataType) -> None:
    """Raise ValueValidationError unless validate(text, data_type) holds."""
    if not validate(text, data_type):
        raise ValueValidationError(str(text), DataType(data_type).value)


def parse(text: str, data_type: DataType) -> bool | int | float:
    """
    Parse text to a typed value; integers are rounded half up and clamped to the type's range.

    Raises ValueValidationError for text that is not a number at all.
    """
    data_type = DataType(data_type)
    s = str(text).strip()
    if data_type == DataType.BOOL:
        return s.lower() in ("true", "1")

    try:
        num = _parse_number(s)
    except ValueError:
        raise ValueValidationError(s, data_type.value, f"Cannot parse {s!r} as {data_type.value}") from None

    if data_type in INTEGER_RANGES:
        if isinstance(num, float) and not math.isfinite(num):
            raise ValueValidationError(s, data_type.value, f"Cannot parse {s!r} as {data_type.value}")
        low, high = INTEGER_RANGES[data_type]
        return max(low, min(high, _round_half_up(num)))

    value = float(num)
    if data_type == DataType.FLOAT32 and not math.isnan(value):
        value = max(-_FLOAT32_MAX, min(_FLOAT32_MAX, value))
    return value


def encode(text: str, data_type: DataType, endianness: Endianness = Endianness.BIG) -> list[int]:
    """
    Encode value text into register words.

    Words come out high-order register first; pass Endianness.LITTLE to get the
    register-swapped order. Out-of-range integers are clamped silently; callers
    that must reject them run validate() first.
    """
    data_type = DataType(data_type)
    value = parse(text, data_type)

    if data_type == DataType.BOOL:
        return [1 if value else 0]

    if data_type in INTEGER_RANGES:
        # Masking yields the two's-complement words for negative values
        if data_type.registers == 1:
            words = [int(value) & WORD_MAX]
        else:
            v = int(value)
            words = [(v >> 16) & WORD_MAX, v & WORD_MAX]
    else:
        raw = struct.pack(f">{_STRUCT_CODE[data_type]}", value)
        words = list(struct.unpack(f">{data_type.registers}H", raw))

    return order_words(words, endianness)
