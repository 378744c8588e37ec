"""Tests for MasterSession dispatch, error mapping, liveness probe and auto-poll (mocked pymodbus)."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pymodbus import FramerType
from pymodbus.exceptions import ConnectionException

from modbus_testtool.client import MasterSession
from modbus_testtool.config import ReadRequest, RtuConfig, TcpConfig, WriteRequest
from modbus_testtool.errors import TransportError, UnsupportedWriteError, ValueValidationError
from modbus_testtool.types import ConnectionState, DataType, ReadFunction, ReadResult, WriteFunction


def ok(**attrs: object) -> MagicMock:
    return MagicMock(isError=lambda: False, **attrs)


@pytest.fixture
def mock_modbus_client() -> MagicMock:
    client = MagicMock()
    client.connect = AsyncMock(return_value=True)
    client.read_holding_registers = AsyncMock(return_value=ok(registers=[16456, 62915]))
    client.read_input_registers = AsyncMock(return_value=ok(registers=[100]))
    client.read_coils = AsyncMock(return_value=ok(bits=[True, False, True, False, False, False, False, False]))
    client.read_discrete_inputs = AsyncMock(return_value=ok(bits=[False] * 8))
    client.write_register = AsyncMock(return_value=ok())
    client.write_registers = AsyncMock(return_value=ok())
    client.write_coil = AsyncMock(return_value=ok())
    client.write_coils = AsyncMock(return_value=ok())
    return client


def run_connected(mock_client: MagicMock, scenario):  # type: ignore[no-untyped-def]
    """Connect a TCP session backed by ``mock_client`` and run ``scenario(session)``."""

    async def main():  # type: ignore[no-untyped-def]
        session = MasterSession(TcpConfig(host="10.0.0.5"))
        await session.connect()
        try:
            return await scenario(session)
        finally:
            session.disconnect()

    with patch("modbus_testtool.client.AsyncModbusTcpClient", return_value=mock_client):
        return asyncio.run(main())


# ============================================================================
# Connection
# ============================================================================


def test_connect_builds_tcp_client(mock_modbus_client: MagicMock) -> None:
    with patch("modbus_testtool.client.AsyncModbusTcpClient", return_value=mock_modbus_client) as cls:

        async def scenario() -> MasterSession:
            session = MasterSession(TcpConfig(host="10.0.0.5", port=1502), timeout=2.0)
            await session.connect()
            assert session.state == ConnectionState.CONNECTED
            session.disconnect()
            return session

        session = asyncio.run(scenario())

    cls.assert_called_once_with(host="10.0.0.5", port=1502, timeout=2.0, retries=0)
    assert session.state == ConnectionState.DISCONNECTED
    messages = [e.message for e in session.log]
    assert "Connected to 10.0.0.5:1502" in messages
    assert messages[-1] == "Disconnected"
    mock_modbus_client.close.assert_called_once()


def test_connect_builds_rtu_client(mock_modbus_client: MagicMock) -> None:
    cfg = RtuConfig(serial_port="/dev/ttyUSB0", baud_rate=19200, parity="even")  # type: ignore[arg-type]
    with patch("modbus_testtool.client.AsyncModbusSerialClient", return_value=mock_modbus_client) as cls:

        async def scenario() -> None:
            async with MasterSession(cfg) as session:
                assert session.connected

        asyncio.run(scenario())

    kwargs = cls.call_args.kwargs
    assert kwargs["port"] == "/dev/ttyUSB0"
    assert kwargs["framer"] == FramerType.RTU
    assert kwargs["baudrate"] == 19200
    assert kwargs["parity"] == "E"
    assert kwargs["bytesize"] == 8
    assert kwargs["stopbits"] == 1


def test_connect_failure_raises(mock_modbus_client: MagicMock) -> None:
    mock_modbus_client.connect = AsyncMock(return_value=False)
    session = MasterSession(TcpConfig(host="10.0.0.5"))
    with patch("modbus_testtool.client.AsyncModbusTcpClient", return_value=mock_modbus_client):
        with pytest.raises(TransportError, match="Failed to connect to 10.0.0.5:502"):
            asyncio.run(session.connect())
    assert not session.connected
    mock_modbus_client.close.assert_called_once()
    assert session.log.entries[-1].message.startswith("Connect failed")


def test_disconnect_when_never_connected_is_noop() -> None:
    session = MasterSession(TcpConfig())
    session.disconnect()
    session.disconnect()
    assert len(session.log) == 0


# ============================================================================
# Reads
# ============================================================================


def test_read_float32(mock_modbus_client: MagicMock) -> None:
    request = ReadRequest(address=0, length=2, data_type=DataType.FLOAT32)

    async def scenario(session: MasterSession) -> tuple[ReadResult, list[str]]:
        result = await session.read(request)
        return result, [e.message for e in session.log]

    result, messages = run_connected(mock_modbus_client, scenario)

    mock_modbus_client.read_holding_registers.assert_called_once_with(0, count=2, device_id=1)
    assert result.data == [16456, 62915]
    assert result.cells == ["3.1400", "-"]
    assert result.summary == "3.1400"
    assert result.rows() == [(0, "3.1400"), (1, "-")]
    assert "Read OK - data: 3.1400" in messages


def test_read_dispatches_by_function(mock_modbus_client: MagicMock) -> None:
    async def scenario(session: MasterSession) -> list[ReadResult]:
        return [
            await session.read(ReadRequest(unit_id=3, function=ReadFunction.INPUT_REGISTERS, address=4, length=1)),
            await session.read(
                ReadRequest(function=ReadFunction.COILS, address=0, length=3, data_type=DataType.BOOL)
            ),
            await session.read(
                ReadRequest(function=ReadFunction.DISCRETE_INPUTS, address=8, length=2, data_type=DataType.BOOL)
            ),
        ]

    inputs, coils, discretes = run_connected(mock_modbus_client, scenario)

    mock_modbus_client.read_input_registers.assert_called_once_with(4, count=1, device_id=3)
    assert inputs.cells == ["100"]
    # Bit responses padded to a whole byte are trimmed to the requested length
    assert coils.data == [True, False, True]
    assert coils.cells == ["true", "false", "true"]
    mock_modbus_client.read_discrete_inputs.assert_called_once_with(8, count=2, device_id=1)
    assert discretes.cells == ["false", "false"]


def test_read_error_response(mock_modbus_client: MagicMock) -> None:
    mock_modbus_client.read_holding_registers = AsyncMock(return_value=MagicMock(isError=lambda: True))

    async def scenario(session: MasterSession) -> MasterSession:
        with pytest.raises(TransportError) as exc_info:
            await session.read(ReadRequest(address=9000, length=1))
        assert exc_info.value.address == 9000
        assert exc_info.value.function == "holding_registers"
        # A failed request is not a disconnect
        assert session.connected
        return session

    session = run_connected(mock_modbus_client, scenario)
    assert any(e.message.startswith("Read failed") for e in session.log)


def test_read_pymodbus_exception(mock_modbus_client: MagicMock) -> None:
    mock_modbus_client.read_holding_registers = AsyncMock(side_effect=ConnectionException("timeout"))

    async def scenario(session: MasterSession) -> None:
        with pytest.raises(TransportError):
            await session.read(ReadRequest(length=1))

    run_connected(mock_modbus_client, scenario)


def test_read_short_response(mock_modbus_client: MagicMock) -> None:
    mock_modbus_client.read_holding_registers = AsyncMock(return_value=ok(registers=[1]))

    async def scenario(session: MasterSession) -> None:
        with pytest.raises(TransportError, match="Short response"):
            await session.read(ReadRequest(length=4))

    run_connected(mock_modbus_client, scenario)


def test_read_not_connected() -> None:
    session = MasterSession(TcpConfig())
    with pytest.raises(TransportError, match="Not connected"):
        asyncio.run(session.read(ReadRequest()))
    assert "Not connected" in session.log.entries[-1].message


# ============================================================================
# Writes
# ============================================================================


def test_write_single_register(mock_modbus_client: MagicMock) -> None:
    async def scenario(session: MasterSession) -> list[int]:
        return await session.write(WriteRequest(value="-1", address=5, data_type=DataType.INT16))

    words = run_connected(mock_modbus_client, scenario)
    assert words == [65535]
    mock_modbus_client.write_register.assert_called_once_with(5, 65535, device_id=1)


def test_write_float32_registers(mock_modbus_client: MagicMock) -> None:
    async def scenario(session: MasterSession) -> list[int]:
        return await session.write(
            WriteRequest(value="3.14", unit_id=2, function=WriteFunction.REGISTERS, address=10, data_type=DataType.FLOAT32)
        )

    run_connected(mock_modbus_client, scenario)
    mock_modbus_client.write_registers.assert_called_once_with(10, [16456, 62915], device_id=2)


def test_write_coil(mock_modbus_client: MagicMock) -> None:
    async def scenario(session: MasterSession) -> None:
        await session.write(WriteRequest(value="true", function=WriteFunction.COIL, address=3, data_type=DataType.BOOL))
        await session.write(WriteRequest(value="0", function=WriteFunction.COILS, address=4, data_type=DataType.BOOL))

    run_connected(mock_modbus_client, scenario)
    mock_modbus_client.write_coil.assert_called_once_with(3, True, device_id=1)
    mock_modbus_client.write_coils.assert_called_once_with(4, [False], device_id=1)


def test_write_invalid_value_not_sent(mock_modbus_client: MagicMock) -> None:
    async def scenario(session: MasterSession) -> None:
        with pytest.raises(ValueValidationError):
            await session.write(WriteRequest(value="70000", data_type=DataType.UINT16))

    run_connected(mock_modbus_client, scenario)
    mock_modbus_client.write_register.assert_not_called()


def test_write_multi_word_with_single_register_function(mock_modbus_client: MagicMock) -> None:
    async def scenario(session: MasterSession) -> None:
        with pytest.raises(UnsupportedWriteError):
            await session.write(WriteRequest(value="1.5", function=WriteFunction.REGISTER, data_type=DataType.FLOAT32))

    run_connected(mock_modbus_client, scenario)
    mock_modbus_client.write_register.assert_not_called()


def test_write_error_response(mock_modbus_client: MagicMock) -> None:
    mock_modbus_client.write_register = AsyncMock(return_value=MagicMock(isError=lambda: True))

    async def scenario(session: MasterSession) -> None:
        with pytest.raises(TransportError):
            await session.write(WriteRequest(value="1"))

    run_connected(mock_modbus_client, scenario)


# ============================================================================
# Liveness probe and auto-poll
# ============================================================================


def test_probe_success(mock_modbus_client: MagicMock) -> None:
    async def scenario(session: MasterSession) -> bool:
        return await session.probe()

    assert run_connected(mock_modbus_client, scenario) is True
    mock_modbus_client.read_holding_registers.assert_called_once_with(0, count=1, device_id=1)


def test_probe_failure_disconnects_once(mock_modbus_client: MagicMock) -> None:
    mock_modbus_client.read_holding_registers = AsyncMock(side_effect=ConnectionException("peer closed"))

    async def scenario(session: MasterSession) -> MasterSession:
        assert await session.probe() is False
        assert session.state == ConnectionState.DISCONNECTED
        assert await session.probe() is False
        return session

    session = run_connected(mock_modbus_client, scenario)
    lost = [e for e in session.log if e.message.startswith("Connection lost")]
    assert len(lost) == 1
    mock_modbus_client.close.assert_called_once()


def test_auto_poll_requires_connection() -> None:
    session = MasterSession(TcpConfig())
    assert session.start_auto_poll(ReadRequest(), 1000) is False
    assert not session.polling


def test_auto_poll_rejects_bad_interval() -> None:
    session = MasterSession(TcpConfig())
    with pytest.raises(ValueError):
        session.start_auto_poll(ReadRequest(), 50)


def test_auto_poll_delivers_results(mock_modbus_client: MagicMock) -> None:
    mock_modbus_client.read_holding_registers = AsyncMock(return_value=ok(registers=[42]))
    results: list[ReadResult] = []

    async def scenario(session: MasterSession) -> None:
        assert session.start_auto_poll(ReadRequest(length=1), 100, results.append) is True
        assert session.polling
        await asyncio.sleep(0.35)
        session.stop_auto_poll()
        assert not session.polling

    run_connected(mock_modbus_client, scenario)
    assert len(results) >= 2
    assert results[0].cells == ["42"]


def test_auto_poll_survives_failed_reads(mock_modbus_client: MagicMock) -> None:
    mock_modbus_client.read_holding_registers = AsyncMock(return_value=MagicMock(isError=lambda: True))

    async def scenario(session: MasterSession) -> None:
        session.start_auto_poll(ReadRequest(length=1), 100)
        await asyncio.sleep(0.25)
        assert session.polling
        assert session.connected

    run_connected(mock_modbus_client, scenario)
    assert mock_modbus_client.read_holding_registers.await_count >= 2
