from .buffer import Device, DeviceBuffer, DevicePointer
from .compiler import GraphCompiler
from .executor import Executor
from .graph import TaskGraph
from .handle import RunHandle, RunState
from .planner import ReductionPlanner
from .queues import QueuePool
from .task import CopyDirection, ReduceMode, Task

__all__ = [
    "CopyDirection",
    "Device",
    "DeviceBuffer",
    "DevicePointer",
    "Executor",
    "GraphCompiler",
    "QueuePool",
    "ReduceMode",
    "ReductionPlanner",
    "RunHandle",
    "RunState",
    "Task",
    "TaskGraph",
]
