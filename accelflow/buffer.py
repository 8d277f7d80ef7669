from dataclasses import dataclass, field
from threading import Lock
from typing import TYPE_CHECKING

import numpy as np

from .config import Config
from .exceptions import BufferAccessError

if TYPE_CHECKING:  # pragma: no cover
    from typing import Any

    from numpy.typing import DTypeLike


@dataclass(eq=False)
class DeviceBuffer:
    """
    Handle to a contiguous block of device memory. Buffers are owned by the `Device`
    that allocated them; tasks only reference them.
    """

    address: int
    count: int
    dtype: np.dtype
    _memory: "np.ndarray | None" = field(default=None, repr=False)

    @property
    def itemsize(self) -> int:
        return self.dtype.itemsize

    @property
    def nbytes(self) -> int:
        return self.count * self.itemsize

    @property
    def allocated(self) -> bool:
        return self._memory is not None

    @property
    def memory(self) -> np.ndarray:
        """Device-side view of the buffer's elements."""
        if self._memory is None:
            raise BufferAccessError(self.address, "buffer has been deallocated")

        return self._memory

    def __len__(self) -> int:
        return self.count

    def __getitem__(self, index: "Any") -> "Any":
        try:
            return self.memory[index]
        except IndexError as e:
            raise BufferAccessError(self.address, str(e)) from e

    def __setitem__(self, index: "Any", value: "Any") -> None:
        try:
            self.memory[index] = value
        except IndexError as e:
            raise BufferAccessError(self.address, str(e)) from e

    def at(self, offset: int) -> "DevicePointer":
        return DevicePointer(self, offset)

    def begin(self) -> "DevicePointer":
        return DevicePointer(self, 0)

    def end(self) -> "DevicePointer":
        return DevicePointer(self, self.count)


@dataclass(frozen=True, slots=True)
class DevicePointer:
    """A position inside a device buffer, used to delimit element ranges."""

    buffer: DeviceBuffer
    offset: int = 0

    def __add__(self, n: int) -> "DevicePointer":
        return DevicePointer(self.buffer, self.offset + n)

    def __sub__(self, other: "int | DevicePointer") -> "Any":
        if isinstance(other, DevicePointer):
            if other.buffer is not self.buffer:
                raise ValueError("Cannot measure distance between different buffers.")

            return self.offset - other.offset

        return DevicePointer(self.buffer, self.offset - other)

    @property
    def address(self) -> int:
        return self.buffer.address + self.offset * self.buffer.itemsize


class Device:
    """
    Minimal device memory allocator. Addresses are handed out bump-pointer style and
    freed blocks are reused first-fit.
    """

    def __init__(self, memory_size: int | None = None) -> None:
        if memory_size is None:
            memory_size = Config().device_memory

        self.memory_size = memory_size
        self._next_free_addr = 0
        self._free_list: list[tuple[int, int]] = []
        self._allocations: dict[int, DeviceBuffer] = {}
        self._lock = Lock()

    def _reserve(self, nbytes: int) -> int:
        for i, (free_addr, free_size) in enumerate(self._free_list):
            if free_size >= nbytes:
                self._free_list.pop(i)
                if free_size > nbytes:
                    self._free_list.append((free_addr + nbytes, free_size - nbytes))
                return free_addr

        if self._next_free_addr + nbytes > self.memory_size:
            raise MemoryError(
                f"Out of device memory: cannot allocate {nbytes} bytes."
                f" Used: {self.used} of {self.memory_size}."
            )

        addr = self._next_free_addr
        self._next_free_addr += nbytes
        return addr

    def allocate(self, count: int, dtype: "DTypeLike" = np.float64) -> DeviceBuffer:
        if count < 0:
            raise ValueError("Buffers cannot hold a negative number of elements.")

        dtype = np.dtype(dtype)
        with self._lock:
            # zero-sized buffers still get a distinct address
            address = self._reserve(max(count * dtype.itemsize, dtype.itemsize))
            buffer = DeviceBuffer(
                address=address,
                count=count,
                dtype=dtype,
                _memory=np.zeros(count, dtype=dtype),
            )
            self._allocations[address] = buffer

        return buffer

    def deallocate(self, buffer: DeviceBuffer) -> None:
        with self._lock:
            if self._allocations.get(buffer.address) is not buffer:
                raise BufferAccessError(buffer.address, "buffer is not allocated")

            del self._allocations[buffer.address]
            self._free_list.append(
                (buffer.address, max(buffer.nbytes, buffer.itemsize))
            )
            buffer._memory = None

    @property
    def used(self) -> int:
        return sum(max(b.nbytes, b.itemsize) for b in self._allocations.values())
