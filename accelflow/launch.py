import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, ClassVar

import anyio
import numpy as np

from .buffer import DevicePointer
from .kernels import fold, tree_combine
from .task import CopyDirection, TaskId

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Callable
    from typing import Any

    from .buffer import DeviceBuffer
    from .exceptions import ExecutionFault
    from .task import BinaryOp, Endpoint

logger = logging.getLogger(__name__)


class RunContext:
    """Per-run state shared by every queue drained for a single plan."""

    def __init__(self, event_ids: "set[TaskId]") -> None:
        # events must be created inside the event loop that awaits them
        self.events: dict["TaskId", anyio.Event] = {
            event_id: anyio.Event() for event_id in event_ids
        }
        self.scratch: dict["TaskId", list["Any"]] = {}
        self.fault: "ExecutionFault | None" = None

    def capture(self, fault: "ExecutionFault") -> bool:
        """Record a fault, returning whether it is the first one for this run."""
        if self.fault is None:
            self.fault = fault
            return True

        logger.debug("Discarding subsequent fault: %s", fault)
        return False


@dataclass(frozen=True, eq=False, kw_only=True)
class Launch(ABC):
    task_id: "TaskId"
    task_name: str

    kind: ClassVar[str]

    @abstractmethod
    def execute(self, context: RunContext) -> None:
        raise NotImplementedError()


def _read(endpoint: "Endpoint", count: int) -> np.ndarray:
    if isinstance(endpoint, DevicePointer):
        return endpoint.buffer[endpoint.offset : endpoint.offset + count]

    return endpoint[:count]


@dataclass(frozen=True, eq=False, kw_only=True)
class CopyLaunch(Launch):
    dst: "Endpoint"
    src: "Endpoint"
    count: int
    direction: CopyDirection

    kind = "copy"

    def execute(self, context: RunContext) -> None:
        if self.count == 0:
            return

        values = _read(self.src, self.count)
        if isinstance(self.dst, DevicePointer):
            start = self.dst.offset
            self.dst.buffer[start : start + self.count] = values
        else:
            self.dst[: self.count] = values


@dataclass(frozen=True, eq=False, kw_only=True)
class InvokeLaunch(Launch):
    fn: "Callable[..., Any]"
    args: tuple["Any", ...] = ()

    kind = "invoke"

    def execute(self, context: RunContext) -> None:
        self.fn(*self.args)


@dataclass(frozen=True, eq=False, kw_only=True)
class FoldLaunch(Launch):
    """Single-pass reduction of a range small enough for one block."""

    first: DevicePointer
    count: int
    result: "DeviceBuffer"
    op: "BinaryOp"
    seeded: bool

    kind = "fold"

    def execute(self, context: RunContext) -> None:
        value = fold(self.op, _read(self.first, self.count))
        if self.seeded:
            value = self.op(self.result[0], value)

        self.result[0] = value


@dataclass(frozen=True, eq=False, kw_only=True)
class PartialFoldLaunch(Launch):
    """First pass of a two-pass reduction: one partial per block."""

    first: DevicePointer
    blocks: tuple[tuple[int, int], ...]
    op: "BinaryOp"

    kind = "partial_fold"

    def execute(self, context: RunContext) -> None:
        values = _read(self.first, self.blocks[-1][1])
        context.scratch[self.task_id] = [
            fold(self.op, values[start:stop]) for start, stop in self.blocks
        ]


@dataclass(frozen=True, eq=False, kw_only=True)
class CombineLaunch(Launch):
    """Second pass of a two-pass reduction: combine partials into the result."""

    result: "DeviceBuffer"
    op: "BinaryOp"
    seeded: bool

    kind = "combine"

    def execute(self, context: RunContext) -> None:
        value = tree_combine(self.op, context.scratch.pop(self.task_id))
        if self.seeded:
            value = self.op(self.result[0], value)

        self.result[0] = value


@dataclass(frozen=True, eq=False, kw_only=True)
class RecordEvent:
    """Marks completion of `event`'s task for waiters on other queues."""

    event: "TaskId"
    task_name: str

    kind: ClassVar[str] = "record"

    @property
    def task_id(self) -> "TaskId":
        return self.event

    def record(self, context: RunContext) -> None:
        context.events[self.event].set()


@dataclass(frozen=True, eq=False, kw_only=True)
class WaitEvent:
    """Holds a queue until `event` has been recorded on its producing queue."""

    event: "TaskId"
    task_id: "TaskId"
    task_name: str

    kind: ClassVar[str] = "wait"

    async def wait(self, context: RunContext) -> None:
        await context.events[self.event].wait()


QueueOp = Launch | RecordEvent | WaitEvent
