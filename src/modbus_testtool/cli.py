#!/usr/bin/env python3
"""Command-line front end for modbus-testtool using Typer."""

import asyncio
import json
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

import typer
from typing_extensions import Annotated

from . import __version__  # type: ignore
from . import codec
from .client import MasterSession
from .config import (
    RtuConfig,
    Parity,
    ReadRequest,
    SlaveConfig,
    TcpConfig,
    WriteRequest,
    check_poll_interval,
)
from .errors import (
    ModbusToolError,
    RegisterRangeError,
    TransportError,
    UnsupportedWriteError,
    ValueValidationError,
)
from .oplog import LogEntry
from .server import SlaveSession
from .types import DataType, Endianness, ReadFunction, ReadResult, WriteFunction

app = typer.Typer(
    name="mbtool",
    help="Modbus test utility: probe a device as master or simulate one as slave.",
    no_args_is_help=True,
)

logger = logging.getLogger(__name__)

# ============================================================================
# Shared options and helpers
# ============================================================================

HostOption = Annotated[
    Optional[str],
    typer.Option("--host", "-h", help="Device hostname or IP address (Modbus TCP)", envvar="MBTOOL_HOST"),
]
PortOption = Annotated[
    int,
    typer.Option("--port", "-p", help="Modbus TCP port", envvar="MBTOOL_PORT"),
]
SerialOption = Annotated[
    Optional[str],
    typer.Option("--serial", help="Serial port path (Modbus RTU), e.g. /dev/ttyUSB0", envvar="MBTOOL_SERIAL"),
]
BaudOption = Annotated[
    int,
    typer.Option("--baud", help="RTU baud rate (9600, 19200, 38400, 57600, 115200)", envvar="MBTOOL_BAUD"),
]
DataBitsOption = Annotated[
    int,
    typer.Option("--data-bits", help="RTU data bits (7 or 8)"),
]
StopBitsOption = Annotated[
    int,
    typer.Option("--stop-bits", help="RTU stop bits (1 or 2)"),
]
ParityOption = Annotated[
    Parity,
    typer.Option("--parity", help="RTU parity", case_sensitive=False),
]
UnitIdOption = Annotated[
    int,
    typer.Option("--unit-id", "-u", help="Modbus unit (slave) ID", envvar="MBTOOL_UNIT_ID"),
]
TimeoutOption = Annotated[
    float,
    typer.Option("--timeout", "-t", help="Request timeout in seconds", envvar="MBTOOL_TIMEOUT"),
]
TypeOption = Annotated[
    DataType,
    typer.Option("--type", help="Data type of the value(s)", case_sensitive=False),
]
EndianOption = Annotated[
    Endianness,
    typer.Option("--endian", "-e", help="Register order of multi-register values", case_sensitive=False),
]
PrecisionOption = Annotated[
    int,
    typer.Option("--precision", help="Decimal places for float values (4 or 6 are typical)", min=0, max=12),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Enable debug logging"),
]
JsonOption = Annotated[
    bool,
    typer.Option("--json", help="Output as JSON"),
]


def setup_logging(verbose: bool) -> None:
    """Configure logging based on verbose flag."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s" if not verbose else "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def create_session(
    host: Optional[str],
    port: int,
    serial: Optional[str],
    baud: int,
    data_bits: int,
    stop_bits: int,
    parity: Parity,
    timeout: float,
) -> MasterSession:
    """Create a MasterSession for TCP (--host) or RTU (--serial)."""
    if serial:
        config: TcpConfig | RtuConfig = RtuConfig(
            serial_port=serial,
            baud_rate=baud,
            data_bits=data_bits,
            stop_bits=stop_bits,
            parity=parity,
        )
    elif host:
        config = TcpConfig(host=host, port=port)
    else:
        typer.echo("Error: --host or --serial is required for this command", err=True)
        raise typer.Exit(2)
    return MasterSession(config, timeout=timeout)


@contextmanager
def report_errors(verbose: bool) -> Iterator[None]:
    """Map tool exceptions to messages on stderr and exit codes (2 input, 3 transport, 4 other)."""
    try:
        yield
    except typer.Exit:
        raise
    except ValueValidationError as e:
        typer.echo(f"Error: Invalid value: {e}", err=True)
        raise typer.Exit(2)
    except (RegisterRangeError, UnsupportedWriteError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(2)
    except TransportError as e:
        typer.echo(f"Error: Connection/Modbus error: {e}", err=True)
        raise typer.Exit(3)
    except ModbusToolError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(4)
    except ValueError as e:
        typer.echo(f"Error: Invalid option: {e}", err=True)
        raise typer.Exit(2)
    except Exception as e:
        typer.echo(f"Error: Unexpected error: {e}", err=True)
        if verbose:
            import traceback
            traceback.print_exc()
        raise typer.Exit(4)


def parse_word(text: str) -> int:
    """Parse one register word (decimal or 0x hex) and check it fits 16 bits."""
    word = int(text.strip(), 0)
    if not 0 <= word <= codec.WORD_MAX:
        raise ValueError(f"Register word out of range 0-65535: {text!r}")
    return word


def parse_seed(text: str) -> tuple[int, DataType, str]:
    """Parse an ADDRESS:TYPE:VALUE seed (e.g. 10:UInt16:1000, 20:Float32:3.14)."""
    parts = text.split(":", 2)
    if len(parts) != 3:
        raise ValueError(f"Seed must be ADDRESS:TYPE:VALUE, got {text!r}")
    address = int(parts[0])
    by_name = {t.value.lower(): t for t in DataType}
    data_type = by_name.get(parts[1].strip().lower())
    if data_type is None:
        raise ValueError(f"Unknown data type in seed {text!r}")
    return address, data_type, parts[2]


def result_to_dict(result: ReadResult) -> dict[str, Any]:
    values = {
        str(addr): text
        for addr, text in result.rows()
        if text != codec.PLACEHOLDER
    }
    return {
        "address": result.address,
        "type": result.data_type.value,
        "endian": result.endianness.value,
        "values": values,
        "raw": [bool(v) if isinstance(v, bool) else int(v) for v in result.data],
    }


def format_rows(rows: list[tuple[int, str]]) -> str:
    return "\n".join(f"{addr:>5}  {text}" for addr, text in rows)


async def _read_once(session: MasterSession, request: ReadRequest) -> ReadResult:
    async with session:
        return await session.read(request)


async def _write_once(session: MasterSession, request: WriteRequest) -> list[int]:
    async with session:
        return await session.write(request)


# ============================================================================
# Master commands
# ============================================================================


@app.command()
def ping(
    host: HostOption = None,
    port: PortOption = 502,
    serial: SerialOption = None,
    baud: BaudOption = 9600,
    data_bits: DataBitsOption = 8,
    stop_bits: StopBitsOption = 1,
    parity: ParityOption = Parity.NONE,
    unit_id: UnitIdOption = 1,
    timeout: TimeoutOption = 5.0,
    verbose: VerboseOption = False,
) -> None:
    """
    Test connectivity by reading one holding register at address 0.
    """
    setup_logging(verbose)

    with report_errors(verbose):
        session = create_session(host, port, serial, baud, data_bits, stop_bits, parity, timeout)
        request = ReadRequest(unit_id=unit_id, address=0, length=1)
        asyncio.run(_read_once(session, request))
        typer.echo(f"OK: Connected to {session.config.describe()}")


@app.command()
def read(
    address: Annotated[int, typer.Argument(help="Start address (0-65535)")],
    function: Annotated[
        ReadFunction,
        typer.Option("--function", "-f", help="Space to read", case_sensitive=False),
    ] = ReadFunction.HOLDING_REGISTERS,
    length: Annotated[int, typer.Option("--length", "-n", help="Number of registers/bits (1-125)")] = 1,
    data_type: TypeOption = DataType.UINT16,
    endian: EndianOption = Endianness.BIG,
    precision: PrecisionOption = codec.PRECISION_COARSE,
    host: HostOption = None,
    port: PortOption = 502,
    serial: SerialOption = None,
    baud: BaudOption = 9600,
    data_bits: DataBitsOption = 8,
    stop_bits: StopBitsOption = 1,
    parity: ParityOption = Parity.NONE,
    unit_id: UnitIdOption = 1,
    timeout: TimeoutOption = 5.0,
    verbose: VerboseOption = False,
    json_output: JsonOption = False,
) -> None:
    """
    Read a block from the device and decode it.

    Multi-register types (Int32, UInt32, Float32, Float64) use consecutive
    registers; their trailing registers print as '-'.
    """
    setup_logging(verbose)

    with report_errors(verbose):
        request = ReadRequest(
            unit_id=unit_id,
            function=function,
            address=address,
            length=length,
            data_type=data_type,
            endianness=endian,
            precision=precision,
        )
        session = create_session(host, port, serial, baud, data_bits, stop_bits, parity, timeout)
        result = asyncio.run(_read_once(session, request))

        if json_output:
            typer.echo(json.dumps(result_to_dict(result)))
        else:
            typer.echo(format_rows(result.rows()))


@app.command()
def write(
    address: Annotated[int, typer.Argument(help="Address to write (0-65535)")],
    value: Annotated[str, typer.Argument(help="Value text; validated against --type before sending")],
    function: Annotated[
        WriteFunction,
        typer.Option("--function", "-f", help="Write function", case_sensitive=False),
    ] = WriteFunction.REGISTER,
    data_type: TypeOption = DataType.UINT16,
    endian: EndianOption = Endianness.BIG,
    host: HostOption = None,
    port: PortOption = 502,
    serial: SerialOption = None,
    baud: BaudOption = 9600,
    data_bits: DataBitsOption = 8,
    stop_bits: StopBitsOption = 1,
    parity: ParityOption = Parity.NONE,
    unit_id: UnitIdOption = 1,
    timeout: TimeoutOption = 5.0,
    verbose: VerboseOption = False,
) -> None:
    """
    Write a typed value to the device.

    Use --function registers for multi-register types. Put negative values
    after '--' so they are not parsed as options.
    """
    setup_logging(verbose)

    with report_errors(verbose):
        codec.require_valid(value, data_type)
        request = WriteRequest(
            value=value,
            unit_id=unit_id,
            function=function,
            address=address,
            data_type=data_type,
            endianness=endian,
        )
        session = create_session(host, port, serial, baud, data_bits, stop_bits, parity, timeout)
        words = asyncio.run(_write_once(session, request))
        typer.echo(f"OK: Wrote {address} = {value} ({' '.join(str(w) for w in words)})")


async def _poll(
    session: MasterSession,
    request: ReadRequest,
    interval_ms: int,
    cycles: int,
    json_output: bool,
) -> None:
    done = asyncio.Event()
    seen = 0

    def emit(result: ReadResult) -> None:
        nonlocal seen
        timestamp = datetime.now(timezone.utc).isoformat()
        if json_output:
            typer.echo(json.dumps({"timestamp": timestamp, **result_to_dict(result)}))
        else:
            pairs = " ".join(f"{addr}={text}" for addr, text in result.rows() if text != codec.PLACEHOLDER)
            typer.echo(f"{timestamp} {pairs}")
        seen += 1
        if cycles and seen >= cycles:
            done.set()

    async with session:
        emit(await session.read(request))
        if done.is_set():
            return
        session.start_auto_poll(request, interval_ms, emit)
        while not done.is_set():
            if not session.connected:
                raise TransportError("Connection lost")
            try:
                await asyncio.wait_for(done.wait(), timeout=0.5)
            except asyncio.TimeoutError:
                pass


@app.command()
def poll(
    address: Annotated[int, typer.Argument(help="Start address (0-65535)")],
    interval: Annotated[int, typer.Option("--interval", "-i", help="Polling interval in ms (100-10000)")] = 1000,
    cycles: Annotated[int, typer.Option("--cycles", help="Stop after this many reads (0 = until Ctrl+C)")] = 0,
    function: Annotated[
        ReadFunction,
        typer.Option("--function", "-f", help="Space to read", case_sensitive=False),
    ] = ReadFunction.HOLDING_REGISTERS,
    length: Annotated[int, typer.Option("--length", "-n", help="Number of registers/bits (1-125)")] = 1,
    data_type: TypeOption = DataType.UINT16,
    endian: EndianOption = Endianness.BIG,
    precision: PrecisionOption = codec.PRECISION_COARSE,
    host: HostOption = None,
    port: PortOption = 502,
    serial: SerialOption = None,
    baud: BaudOption = 9600,
    data_bits: DataBitsOption = 8,
    stop_bits: StopBitsOption = 1,
    parity: ParityOption = Parity.NONE,
    unit_id: UnitIdOption = 1,
    timeout: TimeoutOption = 5.0,
    verbose: VerboseOption = False,
    json_output: JsonOption = False,
) -> None:
    """
    Re-issue the same read on an interval.

    Outputs one line per read: text (timestamp + address=value pairs) or NDJSON
    with --json. Press Ctrl+C to stop.
    """
    setup_logging(verbose)

    if cycles < 0:
        typer.echo(f"Error: Cycles must be >= 0, got {cycles}", err=True)
        raise typer.Exit(2)

    try:
        with report_errors(verbose):
            check_poll_interval(interval)
            request = ReadRequest(
                unit_id=unit_id,
                function=function,
                address=address,
                length=length,
                data_type=data_type,
                endianness=endian,
                precision=precision,
            )
            session = create_session(host, port, serial, baud, data_bits, stop_bits, parity, timeout)
            asyncio.run(_poll(session, request, interval, cycles, json_output))
    except KeyboardInterrupt:
        typer.echo("\nStopped by user", err=True)
        raise typer.Exit(0)


# ============================================================================
# Slave command
# ============================================================================


async def _serve(
    session: SlaveSession,
    seeds: list[tuple[int, DataType, str]],
    endian: Endianness,
    refresh_ms: int,
    start: int,
    count: int,
    data_type: DataType,
    precision: int,
    duration: float,
) -> None:
    def on_entry(entry: LogEntry) -> None:
        typer.echo(entry.format())

    def show() -> None:
        typer.echo(format_rows(session.render(start, count, data_type, endian, precision)))

    session.log.add_listener(on_entry)
    try:
        await session.start()
        for addr, seed_type, value in seeds:
            session.write(addr, seed_type, value, endian)
        show()
        if refresh_ms > 0:
            session.start_auto_refresh(show, refresh_ms)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + duration if duration > 0 else None
        while deadline is None or loop.time() < deadline:
            if not session.running:
                raise TransportError("Slave server stopped unexpectedly")
            await asyncio.sleep(0.1)
    finally:
        await session.stop()
        session.log.remove_listener(on_entry)


@app.command()
def serve(
    port: Annotated[int, typer.Option("--port", "-p", help="TCP listen port", envvar="MBTOOL_SLAVE_PORT")] = 502,
    unit_id: UnitIdOption = 1,
    seed: Annotated[
        Optional[list[str]],
        typer.Option("--seed", help="Initial value ADDRESS:TYPE:VALUE, repeatable (e.g. 10:UInt16:1000)"),
    ] = None,
    endian: EndianOption = Endianness.BIG,
    refresh: Annotated[int, typer.Option("--refresh", help="Table refresh interval in ms (0 = off)")] = 0,
    start: Annotated[int, typer.Option("--start", help="First address shown in the table")] = 0,
    count: Annotated[int, typer.Option("--count", help="Number of addresses shown")] = 20,
    data_type: TypeOption = DataType.UINT16,
    precision: PrecisionOption = codec.PRECISION_COARSE,
    duration: Annotated[float, typer.Option("--duration", help="Stop after this many seconds (0 = until Ctrl+C)")] = 0.0,
    verbose: VerboseOption = False,
) -> None:
    """
    Run a simulated Modbus TCP slave backed by a zeroed register store.

    Remote reads and writes, --seed writes and the printed table all use the
    same store. Bool shows coils; other types show holding registers.
    """
    setup_logging(verbose)

    try:
        with report_errors(verbose):
            config = SlaveConfig(port=port, unit_id=unit_id)
            seeds = [parse_seed(s) for s in (seed or [])]
            if refresh < 0 or duration < 0:
                raise ValueError("--refresh and --duration must be >= 0")
            session = SlaveSession(config)
            asyncio.run(_serve(session, seeds, endian, refresh, start, count, data_type, precision, duration))
    except KeyboardInterrupt:
        typer.echo("\nStopped by user", err=True)
        raise typer.Exit(0)


# ============================================================================
# Offline codec commands
# ============================================================================


@app.command()
def encode(
    value: Annotated[str, typer.Argument(help="Value text to encode")],
    data_type: TypeOption = DataType.UINT16,
    endian: EndianOption = Endianness.BIG,
    hex_output: Annotated[bool, typer.Option("--hex", help="Print words as hexadecimal")] = False,
    verbose: VerboseOption = False,
) -> None:
    """
    Show the register words a value encodes to. Does not require a connection.
    """
    setup_logging(verbose)

    with report_errors(verbose):
        codec.require_valid(value, data_type)
        words = codec.encode(value, data_type, endian)
        typer.echo(" ".join(f"0x{w:04X}" if hex_output else str(w) for w in words))


@app.command()
def decode(
    words: Annotated[list[str], typer.Argument(help="Register words (decimal or 0x hex)")],
    data_type: TypeOption = DataType.UINT16,
    endian: EndianOption = Endianness.BIG,
    precision: PrecisionOption = codec.PRECISION_COARSE,
    verbose: VerboseOption = False,
) -> None:
    """
    Decode register words to typed values. Does not require a connection.
    """
    setup_logging(verbose)

    with report_errors(verbose):
        parsed = [parse_word(w) for w in words]
        if len(parsed) < codec.registers_needed(data_type):
            raise RegisterRangeError(
                0,
                data_type.value,
                f"{data_type.value} needs {codec.registers_needed(data_type)} registers, got {len(parsed)}",
            )
        typer.echo(codec.summarize(parsed, data_type, endian, precision))


@app.command()
def validate(
    value: Annotated[str, typer.Argument(help="Value text to check")],
    data_type: TypeOption = DataType.UINT16,
) -> None:
    """
    Check a value against the range of a data type (exit code 2 when invalid).
    """
    if codec.validate(value, data_type):
        typer.echo(f"valid {data_type.value}: {value}")
    else:
        typer.echo(f"invalid {data_type.value}: {value}", err=True)
        raise typer.Exit(2)


@app.command()
def info(json_output: JsonOption = False) -> None:
    """
    Show package version, supported data types and register spans.
    """
    info_data = {
        "version": __version__,
        "data_types": {t.value: t.registers for t in DataType},
        "endianness": [e.value for e in Endianness],
    }
    if json_output:
        typer.echo(json.dumps(info_data, indent=2))
    else:
        typer.echo(f"modbus-testtool version: {info_data['version']}")
        typer.echo("Data types: " + ", ".join(f"{name} ({n} reg)" for name, n in info_data["data_types"].items()))
        typer.echo("Endianness: " + ", ".join(info_data["endianness"]))


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        typer.echo(f"modbus-testtool {__version__}")
        raise typer.Exit(0)


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option("--version", callback=version_callback, is_eager=True, help="Show version and exit"),
    ] = None,
) -> None:
    """mbtool - Modbus master/slave test utility."""
    pass


if __name__ == "__main__":
    app()
