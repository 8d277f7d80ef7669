from typing import TYPE_CHECKING

import anyio

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Iterator


class DeviceQueue:
    """
    A hardware execution lane. Operations submitted to the same queue execute in
    submission order; runs touching the queue hold its lock while they drain it.
    """

    def __init__(self, index: int) -> None:
        self.index = index
        self.submitted = 0
        self._lock: anyio.Lock | None = None

    @property
    def lock(self) -> anyio.Lock:
        # created lazily so the lock belongs to the executor's event loop
        if self._lock is None:
            self._lock = anyio.Lock()

        return self._lock

    def __repr__(self) -> str:
        return f"DeviceQueue(index={self.index}, submitted={self.submitted})"


class QueuePool:
    """The set of hardware queues an executor drains plans onto."""

    def __init__(self, count: int) -> None:
        if count < 1:
            raise ValueError("A queue pool requires at least one queue.")

        self._queues = [DeviceQueue(index) for index in range(count)]

    def __len__(self) -> int:
        return len(self._queues)

    def __getitem__(self, index: int) -> DeviceQueue:
        return self._queues[index]

    def __iter__(self) -> "Iterator[DeviceQueue]":
        return iter(self._queues)
