"""RequestVector: the six per-address callbacks a simulated server calls into the store."""

from .oplog import OperationLog
from .store import VirtualDeviceStore


class RequestVector:
    """
    Answers remote requests against one VirtualDeviceStore.

    Every callback returns synchronously and appends a line to the slave's
    operation log. Discrete inputs are read from the coil space.
    """

    def __init__(self, store: VirtualDeviceStore, log: OperationLog | None = None) -> None:
        self.store = store
        self.log = log if log is not None else OperationLog("slave")

    def get_coil(self, address: int, unit_id: int) -> bool:
        self.log.info(f"Read coil: address={address}, unit={unit_id}")
        return self.store.get_coil(address)

    def get_discrete_input(self, address: int, unit_id: int) -> bool:
        self.log.info(f"Read discrete input: address={address}, unit={unit_id}")
        return self.store.get_discrete_input(address)

    def get_holding_register(self, address: int, unit_id: int) -> int:
        self.log.info(f"Read holding register: address={address}, unit={unit_id}")
        return self.store.get_holding_register(address)

    def get_input_register(self, address: int, unit_id: int) -> int:
        self.log.info(f"Read input register: address={address}, unit={unit_id}")
        return self.store.get_input_register(address)

    def set_coil(self, address: int, value: bool, unit_id: int) -> bool:
        self.log.info(f"Write coil: address={address}, value={bool(value)}, unit={unit_id}")
        self.store.set_coil(address, value)
        return True

    def set_register(self, address: int, value: int, unit_id: int) -> bool:
        self.log.info(f"Write register: address={address}, value={value}, unit={unit_id}")
        self.store.set_register(address, value)
        return True
