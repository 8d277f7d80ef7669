import numpy as np
import pytest

from accelflow import Device
from accelflow.exceptions import BufferAccessError


def test_contiguous_allocation():
    device = Device()

    first = device.allocate(16, dtype=np.float32)
    second = device.allocate(16, dtype=np.float32)

    assert first.address == 0
    assert second.address == 64
    assert first.itemsize == 4
    assert device.used == 128


def test_freed_blocks_are_reused():
    device = Device()

    first = device.allocate(8, dtype=np.int64)
    device.allocate(8, dtype=np.int64)
    device.deallocate(first)

    reused = device.allocate(4, dtype=np.int64)

    assert reused.address == first.address
    assert not first.allocated


def test_out_of_memory():
    device = Device(memory_size=64)

    device.allocate(4, dtype=np.int64)

    with pytest.raises(MemoryError):
        device.allocate(8, dtype=np.int64)


def test_deallocated_access():
    device = Device()
    buffer = device.allocate(4)
    device.deallocate(buffer)

    with pytest.raises(BufferAccessError):
        buffer[0]

    with pytest.raises(BufferAccessError):
        device.deallocate(buffer)


def test_out_of_range_access():
    buffer = Device().allocate(2)

    with pytest.raises(BufferAccessError):
        buffer[5] = 1.0


def test_pointer_arithmetic():
    buffer = Device().allocate(10, dtype=np.int32)

    first, last = buffer.begin(), buffer.end()

    assert last - first == 10
    assert (first + 3).offset == 3
    assert (last - 2).offset == 8
    assert (first + 3).address == buffer.address + 12

    with pytest.raises(ValueError):
        first - Device().allocate(1).begin()
