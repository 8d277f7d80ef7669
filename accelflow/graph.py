"""
Task graph module for the accelflow framework.
"""

from typing import TYPE_CHECKING

from .buffer import DeviceBuffer, DevicePointer
from .compiler import GraphCompiler
from .exceptions import FrozenGraphError, UncompiledGraphError, UnknownTaskError
from .task import (
    Copy,
    Invoke,
    Reduce,
    ReduceMode,
    Task,
    TaskId,
    as_endpoint,
    direction_of,
)

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Callable, Iterator
    from typing import Any

    from .execution_plan import LaunchPlan
    from .task import BinaryOp, TaskSpec
    from .topology import Topology


def _range_end(last: "Any") -> "Any":
    # a whole buffer as the end of a range means one past its last element
    if isinstance(last, DeviceBuffer):
        return last.end()

    return as_endpoint(last)


class TaskGraph:
    """
    A mutable set of device tasks and dependency edges. Tasks live in an arena and
    are addressed by their insertion index, which stays stable for the lifetime of
    the graph. Once compiled the graph is frozen.
    """

    def __init__(self, name: str = "graph") -> None:
        self.name = name
        self._specs: list["TaskSpec"] = []
        self._names: list[str] = []
        self._successors: list[list[TaskId]] = []
        self._predecessors: list[list[TaskId]] = []
        self._plan: "LaunchPlan | None" = None

    ##
    ## AUTHORING
    ##

    def _resolve_id(self, task: "Task | int") -> TaskId:
        if isinstance(task, Task):
            if task.graph is not self:
                raise UnknownTaskError(task)

            return task.id
        elif isinstance(task, int) and 0 <= task < len(self._specs):
            return TaskId(task)

        raise UnknownTaskError(task)

    def _ensure_mutable(self) -> None:
        if self.compiled:
            raise FrozenGraphError()

    def add_task(self, spec: "TaskSpec", name: str | None = None) -> TaskId:
        self._ensure_mutable()

        task_id = TaskId(len(self._specs))
        self._specs.append(spec)
        self._names.append(name or f"{type(spec).__name__.lower()}-{task_id}")
        self._successors.append([])
        self._predecessors.append([])
        return task_id

    def add_dependency(self, pred: "Task | int", succ: "Task | int") -> None:
        """Require `pred` to complete before `succ` starts."""
        pred_id, succ_id = self._resolve_id(pred), self._resolve_id(succ)
        self._ensure_mutable()

        # parallel edges carry no extra ordering
        if succ_id not in self._successors[pred_id]:
            self._successors[pred_id].append(succ_id)
            self._predecessors[succ_id].append(pred_id)

    def task(self, spec: "TaskSpec", name: str | None = None) -> Task:
        return Task(self, self.add_task(spec, name=name))

    def copy(
        self, dst: "Any", src: "Any", count: int | None = None, name: str | None = None
    ) -> Task:
        """Copy `count` elements from `src` to `dst`, host or device on either side."""
        dst, src = as_endpoint(dst), as_endpoint(src)

        if count is None:
            count = (
                src.buffer.count - src.offset
                if isinstance(src, DevicePointer)
                else len(src)
            )

        return self.task(
            Copy(
                dst=dst,
                src=src,
                count=int(count),
                direction=direction_of(dst, src),
            ),
            name=name,
        )

    def invoke(
        self, fn: "Callable[..., Any]", *args: "Any", name: str | None = None
    ) -> Task:
        """Run `fn(*args)` once on the device."""
        if not callable(fn):
            raise TypeError(f"Invoked tasks require a callable, got {fn!r}.")

        return self.task(Invoke(fn=fn, args=args), name=name)

    def fill(
        self,
        dst: DeviceBuffer | DevicePointer,
        value: "Any",
        count: int | None = None,
        name: str | None = None,
    ) -> Task:
        """Set `count` elements starting at `dst` to `value`."""
        dst = as_endpoint(dst)
        if not isinstance(dst, DevicePointer):
            raise TypeError("Only device memory can be filled.")
        elif count is None:
            count = dst.buffer.count - dst.offset

        def _fill(pointer: DevicePointer, n: int) -> None:
            pointer.buffer[pointer.offset : pointer.offset + n] = value

        return self.invoke(_fill, dst, count, name=name or f"fill-{len(self._specs)}")

    def zero(
        self,
        dst: DeviceBuffer | DevicePointer,
        count: int | None = None,
        name: str | None = None,
    ) -> Task:
        return self.fill(dst, 0, count, name=name or f"zero-{len(self._specs)}")

    def reduce(
        self,
        first: DeviceBuffer | DevicePointer,
        last: DeviceBuffer | DevicePointer,
        result: DeviceBuffer,
        op: "BinaryOp",
        name: str | None = None,
    ) -> Task:
        """
        Fold `[first, last)` into `result` with `op`, starting from the value already
        held by `result`. An empty range leaves `result` unchanged.
        """
        return self.task(
            Reduce(
                first=as_endpoint(first),
                last=_range_end(last),
                result=result,
                op=op,
                mode=ReduceMode.INITIALIZED,
            ),
            name=name,
        )

    def uninitialized_reduce(
        self,
        first: DeviceBuffer | DevicePointer,
        last: DeviceBuffer | DevicePointer,
        result: DeviceBuffer,
        op: "BinaryOp",
        name: str | None = None,
    ) -> Task:
        """
        Fold `[first, last)` into `result` with `op`, ignoring the prior value of
        `result`. The range must hold at least one element.
        """
        return self.task(
            Reduce(
                first=as_endpoint(first),
                last=_range_end(last),
                result=result,
                op=op,
                mode=ReduceMode.UNINITIALIZED,
            ),
            name=name,
        )

    ##
    ## INSPECTION
    ##

    def __len__(self) -> int:
        return len(self._specs)

    @property
    def num_dependencies(self) -> int:
        return sum(len(successors) for successors in self._successors)

    def task_ids(self) -> "Iterator[TaskId]":
        return (TaskId(i) for i in range(len(self._specs)))

    def tasks(self) -> list[Task]:
        return [Task(self, task_id) for task_id in self.task_ids()]

    def edges(self) -> "Iterator[tuple[TaskId, TaskId]]":
        for pred_id, successors in enumerate(self._successors):
            for succ_id in successors:
                yield TaskId(pred_id), succ_id

    def spec_of(self, task: "Task | int") -> "TaskSpec":
        return self._specs[self._resolve_id(task)]

    def name_of(self, task: "Task | int") -> str:
        return self._names[self._resolve_id(task)]

    def successors_of(self, task: "Task | int") -> list[TaskId]:
        return list(self._successors[self._resolve_id(task)])

    def predecessors_of(self, task: "Task | int") -> list[TaskId]:
        return list(self._predecessors[self._resolve_id(task)])

    ##
    ## COMPILATION
    ##

    def compile(self, compiler: GraphCompiler | None = None) -> "TaskGraph":
        """Compile the graph into a launch plan and freeze it."""
        if self.compiled:
            return self

        self._plan = (compiler or GraphCompiler()).compile(self)
        return self

    @property
    def compiled(self) -> bool:
        return self._plan is not None

    @property
    def topology(self) -> "Topology":
        if not self.compiled:
            raise UncompiledGraphError()

        return self._plan.topology

    @property
    def plan(self) -> "LaunchPlan":
        if not self.compiled:
            raise UncompiledGraphError()

        return self._plan
