"""MasterSession: async pymodbus client with typed reads/writes, a liveness probe and auto-poll."""

import logging
from typing import Any, Callable

from pymodbus import FramerType
from pymodbus.client import AsyncModbusSerialClient, AsyncModbusTcpClient
from pymodbus.exceptions import ModbusException as PymodbusException

from . import codec
from .config import (
    LIVENESS_INTERVAL_MS,
    ConnectionConfig,
    ReadRequest,
    TcpConfig,
    WriteRequest,
    check_poll_interval,
)
from .errors import ModbusToolError, ProbeFailure, TransportError, UnsupportedWriteError, ValueValidationError
from .oplog import OperationLog
from .timers import PeriodicTask
from .types import ConnectionState, ReadFunction, ReadResult, WriteFunction

logger = logging.getLogger(__name__)

PROBE_UNIT_ID = 1
PROBE_ADDRESS = 0

_BIT_FUNCTIONS = (ReadFunction.COILS, ReadFunction.DISCRETE_INPUTS)


class MasterSession:
    """
    Modbus master over TCP or RTU.

    connect() starts a 5 s liveness probe (one holding-register read); a failed
    probe flips the session to DISCONNECTED once and closes the transport. A
    failed read or write is reported but leaves the connection state alone.
    Every outcome is appended to ``log``.
    """

    def __init__(
        self,
        config: ConnectionConfig,
        *,
        timeout: float = 5.0,
        retries: int = 0,
        log: OperationLog | None = None,
    ) -> None:
        self._config = config
        self._timeout = timeout
        self._retries = retries
        self.log = log if log is not None else OperationLog("master")
        self._client: AsyncModbusTcpClient | AsyncModbusSerialClient | None = None
        self._state = ConnectionState.DISCONNECTED
        self._probe = PeriodicTask(self.probe, LIVENESS_INTERVAL_MS, name="liveness-probe")
        self._poll: PeriodicTask | None = None
        self._poll_request: ReadRequest | None = None
        self._on_poll_result: Callable[[ReadResult], Any] | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def polling(self) -> bool:
        return self._poll is not None and self._poll.running

    @property
    def config(self) -> ConnectionConfig:
        return self._config

    def _build_client(self) -> AsyncModbusTcpClient | AsyncModbusSerialClient:
        cfg = self._config
        if isinstance(cfg, TcpConfig):
            return AsyncModbusTcpClient(
                host=cfg.host,
                port=cfg.port,
                timeout=self._timeout,
                retries=self._retries,
            )
        return AsyncModbusSerialClient(
            port=cfg.serial_port,
            framer=FramerType.RTU,
            baudrate=cfg.baud_rate,
            bytesize=cfg.data_bits,
            parity=cfg.parity.code,
            stopbits=cfg.stop_bits,
            timeout=self._timeout,
            retries=self._retries,
        )

    def _close_client(self) -> None:
        if self._client is not None:
            try:
                self._client.close()
            except Exception as e:
                logger.warning("Error closing Modbus client: %s", e)
            self._client = None

    async def connect(self) -> None:
        """Open the transport; raises TransportError when the device cannot be reached."""
        if self.connected:
            return
        target = self._config.describe()
        self.log.info(f"Connecting to {target}")
        client = self._build_client()
        try:
            ok = await client.connect()
        except (PymodbusException, OSError) as e:
            client.close()
            err = TransportError(f"Failed to connect to {target}: {e}", cause=e)
            self.log.error("Connect failed", err)
            raise err from e
        if not ok:
            client.close()
            err = TransportError(f"Failed to connect to {target}")
            self.log.error("Connect failed", err)
            raise err

        self._client = client
        self._state = ConnectionState.CONNECTED
        self.log.info(f"Connected to {target}")
        self._probe.start()

    def disconnect(self) -> None:
        """Stop timers and close the transport; a no-op when already disconnected."""
        self._probe.stop()
        self.stop_auto_poll()
        was_connected = self.connected
        self._close_client()
        self._state = ConnectionState.DISCONNECTED
        if was_connected:
            self.log.info("Disconnected")

    async def __aenter__(self) -> "MasterSession":
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        self.disconnect()

    def _require_client(self) -> AsyncModbusTcpClient | AsyncModbusSerialClient:
        if not self.connected or self._client is None:
            err = TransportError("Not connected: connect to a Modbus device first")
            self.log.error("Error", err)
            raise err
        return self._client

    async def _dispatch_read(self, client: Any, request: ReadRequest) -> Any:
        addr, count, unit = request.address, request.length, request.unit_id
        if request.function == ReadFunction.HOLDING_REGISTERS:
            return await client.read_holding_registers(addr, count=count, device_id=unit)
        if request.function == ReadFunction.INPUT_REGISTERS:
            return await client.read_input_registers(addr, count=count, device_id=unit)
        if request.function == ReadFunction.COILS:
            return await client.read_coils(addr, count=count, device_id=unit)
        return await client.read_discrete_inputs(addr, count=count, device_id=unit)

    async def read(self, request: ReadRequest) -> ReadResult:
        """Issue one read request and decode the returned block."""
        client = self._require_client()
        self.log.info(
            f"Read {request.function.value}: unit={request.unit_id}, address={request.address}, "
            f"length={request.length}"
        )
        try:
            rr = await self._dispatch_read(client, request)
        except PymodbusException as e:
            err = TransportError(str(e), address=request.address, function=request.function.value, cause=e)
            self.log.error("Read failed", err)
            raise err from e
        if rr.isError():
            err = TransportError(
                str(rr),
                address=request.address,
                function=request.function.value,
                cause=getattr(rr, "exception", None),
            )
            self.log.error("Read failed", err)
            raise err

        if request.function in _BIT_FUNCTIONS:
            # Bit responses are padded to whole bytes
            data: list[int | bool] = [bool(b) for b in (getattr(rr, "bits", None) or [])][: request.length]
        else:
            data = [int(r) for r in (getattr(rr, "registers", None) or [])]
        if len(data) < request.length:
            err = TransportError(
                f"Short response: expected {request.length} values, got {len(data)}",
                address=request.address,
                function=request.function.value,
            )
            self.log.error("Read failed", err)
            raise err

        cells = codec.decode_block(data, request.data_type, request.endianness, request.precision)
        summary = codec.summarize(data, request.data_type, request.endianness, request.precision)
        self.log.info(f"Read OK - data: {summary}")
        return ReadResult(
            address=request.address,
            data=data,
            data_type=request.data_type,
            endianness=request.endianness,
            cells=cells,
            summary=summary,
        )

    async def write(self, request: WriteRequest) -> list[int]:
        """Validate, encode and send one write request; returns the words sent."""
        client = self._require_client()
        if not codec.validate(request.value, request.data_type):
            err = ValueValidationError(request.value, request.data_type.value)
            self.log.error("Error", err)
            raise err
        words = codec.encode(request.value, request.data_type, request.endianness)
        if request.function == WriteFunction.REGISTER and len(words) > 1:
            err = UnsupportedWriteError(request.data_type.value, "a single register (FC06)")
            self.log.error("Error", err)
            raise err

        self.log.info(
            f"Write {request.function.value}: unit={request.unit_id}, address={request.address}, "
            f"value={request.value}"
        )
        addr, unit = request.address, request.unit_id
        try:
            if request.function == WriteFunction.REGISTER:
                rr = await client.write_register(addr, words[0], device_id=unit)
            elif request.function == WriteFunction.REGISTERS:
                rr = await client.write_registers(addr, words, device_id=unit)
            elif request.function == WriteFunction.COIL:
                rr = await client.write_coil(addr, bool(words[0]), device_id=unit)
            else:
                rr = await client.write_coils(addr, [bool(w) for w in words], device_id=unit)
        except PymodbusException as e:
            err = TransportError(str(e), address=addr, function=request.function.value, cause=e)
            self.log.error("Write failed", err)
            raise err from e
        if rr.isError():
            err = TransportError(
                str(rr),
                address=addr,
                function=request.function.value,
                cause=getattr(rr, "exception", None),
            )
            self.log.error("Write failed", err)
            raise err
        self.log.info("Write OK")
        return words

    async def probe(self) -> bool:
        """
        Liveness check: read one holding register from unit 1.

        On failure the probe timer is stopped first, then the session flips to
        DISCONNECTED and the transport is closed. Returns False in that case.
        """
        client = self._client
        if not self.connected or client is None:
            return False
        try:
            rr = await client.read_holding_registers(PROBE_ADDRESS, count=1, device_id=PROBE_UNIT_ID)
            if rr.isError():
                raise ProbeFailure(str(rr), address=PROBE_ADDRESS, function=ReadFunction.HOLDING_REGISTERS.value)
        except (PymodbusException, OSError, ProbeFailure) as e:
            self._on_probe_failure(e)
            return False
        return True

    def _on_probe_failure(self, exc: BaseException) -> None:
        self._probe.stop()
        if not self.connected:
            return
        self._state = ConnectionState.DISCONNECTED
        self.stop_auto_poll()
        self.log.error("Connection lost", exc)
        self._close_client()

    def start_auto_poll(
        self,
        request: ReadRequest,
        interval_ms: int,
        on_result: Callable[[ReadResult], Any] | None = None,
    ) -> bool:
        """
        Re-issue ``request`` every ``interval_ms`` (100-10000 ms) while connected.

        Returns False without starting when the session is not connected.
        """
        check_poll_interval(interval_ms)
        if not self.connected:
            self.log.error("Auto-poll not started: not connected")
            return False
        self._poll_request = request
        self._on_poll_result = on_result
        if self._poll is None:
            self._poll = PeriodicTask(self._poll_once, interval_ms, name="auto-poll")
        self._poll.start(interval_ms)
        return True

    def set_poll_interval(self, interval_ms: int) -> None:
        check_poll_interval(interval_ms)
        if self._poll is not None:
            self._poll.set_interval(interval_ms)

    def stop_auto_poll(self) -> None:
        if self._poll is not None:
            self._poll.stop()

    async def _poll_once(self) -> None:
        if self._poll_request is None:
            return
        try:
            result = await self.read(self._poll_request)
        except ModbusToolError:
            # read() has already logged the failure; keep polling
            return
        if self._on_poll_result is not None:
            self._on_poll_result(result)
