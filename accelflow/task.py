from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING, Any, NewType

import numpy as np
from pydantic import BaseModel, ConfigDict, InstanceOf

from .buffer import DeviceBuffer, DevicePointer

if TYPE_CHECKING:  # pragma: no cover
    from .graph import TaskGraph

TaskId = NewType("TaskId", int)
Endpoint = InstanceOf[np.ndarray] | InstanceOf[DevicePointer]
BinaryOp = Callable[[Any, Any], Any]


class CopyDirection(Enum):
    HOST_TO_DEVICE = "h2d"
    DEVICE_TO_HOST = "d2h"
    DEVICE_TO_DEVICE = "d2d"
    HOST_TO_HOST = "h2h"


class ReduceMode(Enum):
    INITIALIZED = "initialized"
    UNINITIALIZED = "uninitialized"


def as_endpoint(value: Any) -> Endpoint:
    """Normalize a copy endpoint to either host memory or a device position."""
    if isinstance(value, DeviceBuffer):
        return value.begin()
    elif isinstance(value, DevicePointer | np.ndarray):
        return value

    return np.asarray(value)


def direction_of(dst: Endpoint, src: Endpoint) -> CopyDirection:
    on_device = (isinstance(src, DevicePointer), isinstance(dst, DevicePointer))
    return {
        (False, True): CopyDirection.HOST_TO_DEVICE,
        (True, False): CopyDirection.DEVICE_TO_HOST,
        (True, True): CopyDirection.DEVICE_TO_DEVICE,
        (False, False): CopyDirection.HOST_TO_HOST,
    }[on_device]


class Copy(BaseModel):
    dst: Endpoint
    src: Endpoint
    count: int
    direction: CopyDirection

    model_config = ConfigDict(extra="forbid", frozen=True, arbitrary_types_allowed=True)


class Invoke(BaseModel):
    fn: Callable[..., Any]
    args: tuple[Any, ...] = ()

    model_config = ConfigDict(extra="forbid", frozen=True, arbitrary_types_allowed=True)


class Reduce(BaseModel):
    # ranges are checked at compile time so bad endpoints surface as compile errors
    first: Endpoint
    last: Endpoint
    result: InstanceOf[DeviceBuffer]
    op: BinaryOp
    mode: ReduceMode = ReduceMode.INITIALIZED

    model_config = ConfigDict(extra="forbid", frozen=True, arbitrary_types_allowed=True)

    @property
    def count(self) -> int:
        return self.last.offset - self.first.offset


TaskSpec = Copy | Invoke | Reduce


class Task:
    """Handle to a task inside a `TaskGraph`, used to wire dependency edges."""

    __slots__ = ("graph", "id")

    def __init__(self, graph: "TaskGraph", id: TaskId) -> None:
        self.graph = graph
        self.id = id

    @property
    def name(self) -> str:
        return self.graph.name_of(self.id)

    @property
    def spec(self) -> TaskSpec:
        return self.graph.spec_of(self.id)

    @property
    def num_successors(self) -> int:
        return len(self.graph.successors_of(self.id))

    @property
    def num_dependents(self) -> int:
        return len(self.graph.predecessors_of(self.id))

    def precede(self, *tasks: "Task") -> "Task":
        """Make this task run before each of `tasks`."""
        for task in tasks:
            self.graph.add_dependency(self, task)

        return self

    def succeed(self, *tasks: "Task") -> "Task":
        """Make this task run after each of `tasks`."""
        for task in tasks:
            self.graph.add_dependency(task, self)

        return self

    def __eq__(self, other: object) -> bool:
        return (
            isinstance(other, Task)
            and other.graph is self.graph
            and other.id == self.id
        )

    def __hash__(self) -> int:
        return hash((id(self.graph), self.id))

    def __repr__(self) -> str:
        return f"Task(id={self.id}, name={self.name!r})"
