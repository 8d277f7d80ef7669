import numpy as np
import pytest

from accelflow import Device, Executor

BACKENDS = [
    pytest.param(("asyncio", {"use_uvloop": False}), id="asyncio"),
    pytest.param(
        ("trio", {"restrict_keyboard_interrupt_to_checkpoints": True}), id="trio"
    ),
]


@pytest.fixture(params=BACKENDS, scope="session")
def anyio_backend(request):
    return request.param


@pytest.fixture(params=BACKENDS, scope="module")
def backend(request):
    name, options = request.param
    return {"backend": name, **options}


@pytest.fixture(scope="module")
def executor(backend):
    with Executor(
        async_config=dict(backend), queue_count=4, parallel_width=8
    ) as executor:
        yield executor


@pytest.fixture
def device():
    return Device(memory_size=1 << 26)


@pytest.fixture
def make_executor(backend):
    executors: list[Executor] = []

    def _make(**settings) -> Executor:
        executor = Executor(async_config=dict(backend), **settings)
        executors.append(executor)
        return executor

    yield _make

    for executor in executors:
        executor.shutdown()


@pytest.fixture
def upload(device):
    def _upload(values, dtype=None):
        host = np.asarray(values, dtype=dtype)
        buffer = device.allocate(len(host), dtype=host.dtype)
        buffer[:] = host
        return buffer

    return _upload
