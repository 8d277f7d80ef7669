import atexit
import logging
import warnings
import weakref
from contextlib import AsyncExitStack
from functools import partial
from typing import TYPE_CHECKING

import anyio
import anyio.to_thread
import sniffio
from anyio.from_thread import start_blocking_portal

from .buffer import Device
from .compiler import GraphCompiler
from .config import Config
from .exceptions import (
    DeviceAccessError,
    ExecutionFault,
    OperatorFault,
    QueueCapacityError,
    ResourceExhaustedError,
)
from .execution_plan import LaunchPlan
from .handle import RunHandle
from .launch import Launch, RecordEvent, RunContext, WaitEvent
from .planner import ReductionPlanner
from .queues import QueuePool

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Callable
    from types import TracebackType
    from typing import Any

    from anyio import CancelScope

    from .graph import TaskGraph
    from .launch import QueueOp
    from .queues import DeviceQueue

logger = logging.getLogger(__name__)


def _fault_from(exc: Exception, task_name: str) -> ExecutionFault:
    if isinstance(exc, ExecutionFault):
        return exc
    elif isinstance(exc, IndexError):
        return DeviceAccessError(task_name, str(exc))
    elif isinstance(exc, MemoryError):
        return ResourceExhaustedError(task_name, str(exc) or "out of memory")

    return OperatorFault(task_name, f"{type(exc).__name__}: {exc}")


class Executor:
    """
    Runs compiled task graphs on a pool of device queues.

    Queues are drained concurrently on an event loop hosted by a blocking portal, so
    `run` never blocks the calling thread. Compute launches are offloaded to worker
    threads; barrier waits are awaited on the loop and never spin.
    Buffers for its graphs can be allocated from `device`, sized by the
    `device_memory` setting.
    """

    def __init__(
        self,
        queues: "QueuePool | None" = None,
        async_config: dict[str, "Any"] | None = None,
        **settings: "Any",
    ) -> None:
        # the backend is popped below, leave the caller's options untouched
        async_config = dict(async_config or {})

        self.config = Config(**settings)
        self.device = Device(memory_size=self.config.device_memory)
        self.queues = queues or QueuePool(self.config.queue_count)
        self.compiler = GraphCompiler(
            queue_count=len(self.queues),
            planner=ReductionPlanner(
                parallel_width=self.config.parallel_width,
                max_blocks=self.config.max_blocks,
            ),
        )

        self._portal_cm = start_blocking_portal(
            async_config.pop("backend", "asyncio"), async_config
        )
        self.async_portal = self._portal_cm.__enter__()

        self._is_shutdown = False
        weakref.finalize(self, Executor._shutdown, weakref.ref(self))
        atexit.register(Executor._shutdown, weakref.ref(self))

    def _prepare(self, graph: "TaskGraph | LaunchPlan") -> LaunchPlan:
        if self._is_shutdown:
            raise RuntimeError("Executor has been shut down.")

        if isinstance(graph, LaunchPlan):
            plan = graph
        else:
            plan = graph.compile(self.compiler).plan

        if plan.queue_count > len(self.queues):
            raise QueueCapacityError(plan.queue_count, len(self.queues))

        return plan

    def run(self, graph: "TaskGraph | LaunchPlan") -> RunHandle:
        """
        Compile `graph` if needed and enqueue its plan. Returns without waiting for
        the plan to execute; compile errors are raised before anything is enqueued.
        """
        try:
            sniffio.current_async_library()
            raise RuntimeError(
                "Enqueuing a run from inside an event loop must go through the portal"
                " thread. Use `await executor.run_async(graph)` instead."
            )
        except sniffio.AsyncLibraryNotFoundError:
            pass

        plan = self._prepare(graph)
        future = self.async_portal.start_task_soon(
            self._execute, plan, name=f"run:{plan.uuid}"
        )
        return RunHandle(plan, future)

    async def run_async(self, graph: "TaskGraph | LaunchPlan") -> RunHandle:
        """Enqueue a run from within an event loop; see `run`."""
        plan = self._prepare(graph)
        future = await anyio.to_thread.run_sync(
            partial(
                self.async_portal.start_task_soon,
                self._execute,
                plan,
                name=f"run:{plan.uuid}",
            )
        )
        return RunHandle(plan, future)

    async def _execute(self, plan: LaunchPlan) -> ExecutionFault | None:
        context = RunContext(plan.events)
        lanes = plan.lanes()

        async with AsyncExitStack() as stack:
            # ascending lock order keeps concurrent runs from deadlocking
            for index in sorted(lanes):
                await stack.enter_async_context(self.queues[index].lock)

            async with anyio.create_task_group() as tg:
                for index, ops in lanes.items():
                    tg.start_soon(
                        self._drain, self.queues[index], ops, context, tg.cancel_scope
                    )

        if context.fault is not None:
            logger.debug("Run %s faulted: %s", plan.uuid, context.fault)

        return context.fault

    async def _drain(
        self,
        queue: "DeviceQueue",
        ops: list["QueueOp"],
        context: RunContext,
        cancel_scope: "CancelScope",
    ) -> None:
        for op in ops:
            try:
                match op:
                    case WaitEvent():
                        await op.wait(context)
                    case RecordEvent():
                        op.record(context)
                    case Launch():
                        await anyio.to_thread.run_sync(op.execute, context)
                        queue.submitted += 1
            except Exception as e:
                fault = _fault_from(e, op.task_name)
                if fault is not e:
                    fault.__cause__ = e

                # faults are terminal for the run, stop every other queue
                context.capture(fault)
                cancel_scope.cancel()
                return

    @staticmethod
    def _shutdown(instance_ref: "Callable[[], Executor | None]") -> None:
        # static using a weakref to prevent reference cycles
        if (instance := instance_ref()) and not instance._is_shutdown:
            try:
                instance._portal_cm.__exit__(None, None, None)
            except Exception as e:
                warnings.warn(
                    f"An exception occurred while shutting down the Executor: {e}",
                    stacklevel=2,
                )

            instance._is_shutdown = True

    def shutdown(self) -> None:
        """Stop the executor once every enqueued run has drained."""
        Executor._shutdown(lambda: self)

    def __enter__(self) -> "Executor":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: "TracebackType | None",
    ) -> None:
        self.shutdown()
