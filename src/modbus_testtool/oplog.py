"""OperationLog: timestamped, user-visible log lines for master and slave sessions."""

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterator

from .errors import cap_message

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 1000


@dataclass(frozen=True)
class LogEntry:
    timestamp: datetime
    level: int
    message: str

    def format(self) -> str:
        return f"[{self.timestamp.strftime('%H:%M:%S')}] {self.message}"


class OperationLog:
    """
    Bounded in-memory list of operation lines, newest last.

    Each line is mirrored to the ``logging`` logger of the owning session and
    passed to every registered listener. Nothing is written to disk.
    """

    def __init__(
        self,
        name: str = "operations",
        capacity: int = DEFAULT_CAPACITY,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.name = name
        self._entries: deque[LogEntry] = deque(maxlen=capacity)
        self._listeners: list[Callable[[LogEntry], None]] = []
        self._clock = clock
        self._logger = logging.getLogger(f"{__package__}.{name}")

    def add_listener(self, listener: Callable[[LogEntry], None]) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[LogEntry], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def append(self, message: str, level: int = logging.INFO) -> LogEntry:
        entry = LogEntry(self._clock(), level, message)
        self._entries.append(entry)
        self._logger.log(level, "%s", message)
        for listener in list(self._listeners):
            listener(entry)
        return entry

    def info(self, message: str) -> LogEntry:
        return self.append(message, logging.INFO)

    def error(self, message: str, exc: BaseException | None = None) -> LogEntry:
        """Append a failure line; the cause (if any) is capped to keep the line readable."""
        if exc is not None:
            message = f"{message}: {describe_error(exc)}"
        return self.append(message, logging.ERROR)

    def clear(self) -> None:
        self._entries.clear()

    @property
    def entries(self) -> list[LogEntry]:
        return list(self._entries)

    def lines(self) -> list[str]:
        return [e.format() for e in self._entries]

    def text(self) -> str:
        return "\n".join(self.lines())

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[LogEntry]:
        return iter(list(self._entries))


def describe_error(exc: BaseException) -> str:
    """Human-readable, length-capped description of an exception."""
    message = str(exc) or exc.__class__.__name__
    return cap_message(message)
