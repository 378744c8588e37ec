"""SlaveSession: a simulated Modbus TCP slave serving a VirtualDeviceStore through pymodbus."""

import asyncio
import logging
from typing import Any, Callable

from pymodbus.datastore import ModbusDeviceContext, ModbusServerContext
from pymodbus.datastore.store import BaseModbusDataBlock
from pymodbus.server import ModbusTcpServer

from . import codec
from .config import SlaveConfig
from .errors import ModbusToolError, TransportError
from .oplog import OperationLog
from .store import ADDRESS_SPACE, VirtualDeviceStore
from .timers import PeriodicTask
from .types import DataType, Endianness, ModbusTable
from .vector import RequestVector

logger = logging.getLogger(__name__)

# ModbusDeviceContext hands data blocks the request address plus one
ADDRESS_SHIFT = 1

# A server task that ends this soon after start never got to listen
STARTUP_GRACE_S = 0.2

_BIT_TABLES = (ModbusTable.COIL, ModbusTable.DISCRETE_INPUT)


class VectorDataBlock(BaseModbusDataBlock):
    """pymodbus data block that answers every slot through a RequestVector callback."""

    def __init__(self, vector: RequestVector, table: ModbusTable, unit_id: int) -> None:
        self.vector = vector
        self.table = ModbusTable(table)
        self.unit_id = unit_id
        self.address = ADDRESS_SHIFT
        self.default_value = False if self.table in _BIT_TABLES else 0
        self.values: list[Any] = []

    def validate(self, address: int, count: int = 1) -> bool:
        start = address - ADDRESS_SHIFT
        return count >= 1 and start >= 0 and start + count <= ADDRESS_SPACE

    def getValues(self, address: int, count: int = 1) -> list[Any]:
        getter = {
            ModbusTable.COIL: self.vector.get_coil,
            ModbusTable.DISCRETE_INPUT: self.vector.get_discrete_input,
            ModbusTable.HOLDING_REGISTER: self.vector.get_holding_register,
            ModbusTable.INPUT_REGISTER: self.vector.get_input_register,
        }[self.table]
        start = address - ADDRESS_SHIFT
        return [getter(start + i, self.unit_id) for i in range(count)]

    def setValues(self, address: int, values: Any) -> None:
        if not isinstance(values, list):
            values = [values]
        start = address - ADDRESS_SHIFT
        if self.table == ModbusTable.COIL:
            for i, v in enumerate(values):
                self.vector.set_coil(start + i, bool(v), self.unit_id)
        elif self.table == ModbusTable.HOLDING_REGISTER:
            for i, v in enumerate(values):
                self.vector.set_register(start + i, int(v), self.unit_id)
        else:
            logger.warning("Rejected remote write to read-only %s at %d", self.table.value, start)

    async def async_getValues(self, address: int, count: int = 1) -> list[Any]:
        return self.getValues(address, count)

    async def async_setValues(self, address: int, values: Any) -> None:
        self.setValues(address, values)


def build_server_context(vector: RequestVector, unit_id: int) -> ModbusServerContext:
    """Server context answering ``unit_id`` only, every space backed by ``vector``."""
    device = ModbusDeviceContext(
        co=VectorDataBlock(vector, ModbusTable.COIL, unit_id),
        di=VectorDataBlock(vector, ModbusTable.DISCRETE_INPUT, unit_id),
        hr=VectorDataBlock(vector, ModbusTable.HOLDING_REGISTER, unit_id),
        ir=VectorDataBlock(vector, ModbusTable.INPUT_REGISTER, unit_id),
    )
    return ModbusServerContext(devices={unit_id: device}, single=False)


class SlaveSession:
    """
    One run of the simulated slave.

    start() allocates a zeroed VirtualDeviceStore and serves it; stop() shuts
    the server down and discards the store. Local writes and table renders go
    through the same store the server answers from.
    """

    def __init__(self, config: SlaveConfig | None = None, *, log: OperationLog | None = None) -> None:
        self.config = config if config is not None else SlaveConfig()
        self.log = log if log is not None else OperationLog("slave")
        self._store: VirtualDeviceStore | None = None
        self._server: ModbusTcpServer | None = None
        self._serve_task: asyncio.Task[Any] | None = None
        self._refresh: PeriodicTask | None = None

    @property
    def running(self) -> bool:
        return self._server is not None

    @property
    def store(self) -> VirtualDeviceStore | None:
        return self._store

    async def start(self) -> None:
        """
        Serve a fresh zeroed store.

        Raises TransportError when the server stops within STARTUP_GRACE_S,
        which is how a failed bind (port in use, bad address) shows up.
        """
        if self.running:
            logger.warning("Slave already running on port %d", self.config.port)
            return
        store = VirtualDeviceStore()
        vector = RequestVector(store, self.log)
        context = build_server_context(vector, self.config.unit_id)
        server = ModbusTcpServer(context, address=(self.config.host, self.config.port))

        self._store = store
        self._server = server
        task = asyncio.get_running_loop().create_task(server.serve_forever(), name="modbus-slave")
        self._serve_task = task
        done, _ = await asyncio.wait({task}, timeout=STARTUP_GRACE_S)
        if done:
            self._reset()
            exc = None if task.cancelled() else task.exception()
            err = TransportError(
                f"Slave could not listen on port {self.config.port}: {exc or 'server stopped'}",
                cause=exc,
            )
            self.log.error("Slave start failed", err)
            raise err
        task.add_done_callback(self._on_serve_done)
        self.log.info(f"Slave started, listening on port {self.config.port}, unit id {self.config.unit_id}")

    def _reset(self) -> None:
        self.stop_auto_refresh()
        self._server = None
        self._serve_task = None
        self._store = None

    def _on_serve_done(self, task: asyncio.Task[Any]) -> None:
        if task.cancelled() or task is not self._serve_task:
            return
        exc = task.exception()
        self._reset()
        if exc is not None:
            self.log.error("Server error", exc)
        else:
            self.log.error("Server stopped")

    async def stop(self) -> None:
        """Shut the server down and drop the store; safe when not running."""
        self.stop_auto_refresh()
        server, self._server = self._server, None
        task, self._serve_task = self._serve_task, None
        if server is None:
            return
        try:
            await server.shutdown()
        except Exception as e:
            logger.warning("Error shutting down Modbus server: %s", e)
        if task is not None and not task.done():
            task.cancel()
        self._store = None
        self.log.info("Slave stopped")

    def _require_store(self) -> VirtualDeviceStore:
        if self._store is None:
            raise ModbusToolError("Slave is not running")
        return self._store

    def write(
        self,
        address: int,
        data_type: DataType,
        value: str | bool | int | float,
        endianness: Endianness = Endianness.BIG,
        table: ModbusTable | None = None,
    ) -> list[int]:
        """Local typed write into the running slave's memory."""
        data_type = DataType(data_type)
        try:
            words = self._require_store().write_typed(address, data_type, value, endianness, table)
        except ModbusToolError as e:
            self.log.error("Write rejected", e)
            raise
        self.log.info(f"Write {data_type.value}: address={address}, value={value}")
        return words

    def render(
        self,
        start: int,
        count: int,
        data_type: DataType,
        endianness: Endianness = Endianness.BIG,
        precision: int = codec.PRECISION_COARSE,
    ) -> list[tuple[int, str]]:
        """
        (address, display text) for ``count`` slots from ``start``.

        Bool reads the coil space; every other type reads holding registers.
        Values whose trailing registers would fall past address 65535 show as
        codec.MISSING.
        """
        store = self._require_store()
        data_type = DataType(data_type)
        count = max(0, min(count, ADDRESS_SPACE - start))
        # Read the trailing registers of the last value too
        span = min(count + data_type.registers - 1, ADDRESS_SPACE - start)
        if data_type == DataType.BOOL:
            words: list[Any] = store.read_coils(start, span)
        else:
            words = store.read_holding_registers(start, span)
        cells = codec.decode_block(words, data_type, endianness, precision)[:count]
        return [(start + i, text) for i, text in enumerate(cells)]

    def start_auto_refresh(self, on_refresh: Callable[[], Any], interval_ms: int) -> None:
        """Call ``on_refresh`` every ``interval_ms``; restarting replaces the previous timer."""
        self.stop_auto_refresh()
        self._refresh = PeriodicTask(on_refresh, interval_ms, name="auto-refresh")
        self._refresh.start()

    def stop_auto_refresh(self) -> None:
        if self._refresh is not None:
            self._refresh.stop()
            self._refresh = None
