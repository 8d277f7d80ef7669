"""
Graph compiler: turns a frozen task graph into an ordered launch plan.

Tasks are ordered topologically (ties broken by insertion order) and assigned to
queues greedily. A task stays on the queue of its sole predecessor while that
predecessor is still the queue's tail; otherwise it is placed round-robin among idle
queues and a barrier is inserted for every predecessor living on another queue.
Queues execute in submission order, so predecessors on the same queue need none.
"""

import logging
from typing import TYPE_CHECKING

import networkx as nx
import numpy as np

from .buffer import DevicePointer
from .exceptions import CyclicGraphError, InvalidBufferError
from .execution_plan import Barrier, LaunchPlan, PlanEntry
from .launch import CopyLaunch, InvokeLaunch, RecordEvent, WaitEvent
from .planner import ReductionPlanner
from .task import Copy, CopyDirection, Invoke, Reduce
from .topology import Topology

if TYPE_CHECKING:  # pragma: no cover
    from .graph import TaskGraph
    from .launch import Launch
    from .task import Endpoint, TaskId, TaskSpec

logger = logging.getLogger(__name__)


def _capacity(name: str, side: str, endpoint: "Endpoint", writable: bool) -> int:
    if isinstance(endpoint, DevicePointer):
        buffer = endpoint.buffer
        if not buffer.allocated:
            raise InvalidBufferError(name, f"{side} buffer has been deallocated")
        elif not 0 <= endpoint.offset <= buffer.count:
            raise InvalidBufferError(
                name, f"{side} offset {endpoint.offset} is outside its buffer"
            )

        return buffer.count - endpoint.offset

    if not isinstance(endpoint, np.ndarray) or endpoint.ndim != 1:
        raise InvalidBufferError(name, f"{side} host array must be one-dimensional")
    elif writable and not endpoint.flags.writeable:
        raise InvalidBufferError(name, f"{side} host array is read-only")

    return len(endpoint)


class GraphCompiler:
    def __init__(
        self, queue_count: int = 4, planner: "ReductionPlanner | None" = None
    ) -> None:
        if queue_count < 1:
            raise ValueError("At least one queue is required.")

        self.queue_count = queue_count
        self.planner = planner or ReductionPlanner()

    def resolve(self, graph: "TaskGraph") -> Topology:
        digraph = nx.DiGraph()

        for task_id in graph.task_ids():
            digraph.add_node(task_id, label=graph.name_of(task_id))

        digraph.add_edges_from(graph.edges())

        try:
            # node ids are insertion indices, so ties resolve in insertion order
            order = list(nx.lexicographical_topological_sort(digraph))
        except nx.NetworkXUnfeasible as e:
            cycle = nx.find_cycle(digraph)
            raise CyclicGraphError([graph.name_of(src) for src, _ in cycle]) from e

        return Topology(digraph=digraph, order=order)

    def expand(self, task_id: "TaskId", name: str, spec: "TaskSpec") -> list["Launch"]:
        """Validate a task and lower it into the launches that implement it."""
        match spec:
            case Copy(dst=dst, src=src, count=count, direction=direction):
                if direction is CopyDirection.HOST_TO_HOST:
                    raise InvalidBufferError(name, "copies must involve device memory")
                elif count < 0:
                    raise InvalidBufferError(name, "copy count cannot be negative")

                for side, endpoint, writable in (
                    ("source", src, False),
                    ("destination", dst, True),
                ):
                    if count > (available := _capacity(name, side, endpoint, writable)):
                        raise InvalidBufferError(
                            name,
                            f"{side} holds {available} elements but {count} are copied",
                        )

                return [
                    CopyLaunch(
                        task_id=task_id,
                        task_name=name,
                        dst=dst,
                        src=src,
                        count=count,
                        direction=direction,
                    )
                ]
            case Invoke(fn=fn, args=args):
                return [InvokeLaunch(task_id=task_id, task_name=name, fn=fn, args=args)]
            case Reduce(first=first, last=last, result=result):
                if not isinstance(first, DevicePointer) or not isinstance(
                    last, DevicePointer
                ):
                    raise InvalidBufferError(name, "range must lie in device memory")
                elif first.buffer is not last.buffer:
                    raise InvalidBufferError(name, "range spans different buffers")
                elif not 0 <= first.offset <= last.offset:
                    raise InvalidBufferError(name, "range end precedes its start")

                _capacity(name, "range", last, writable=False)

                if not result.allocated:
                    raise InvalidBufferError(name, "result buffer has been deallocated")
                elif result.count != 1:
                    raise InvalidBufferError(
                        name, f"result buffer holds {result.count} elements, not 1"
                    )

                return self.planner.expand(task_id, name, spec)
            case _:
                raise TypeError(f"Unsupported task specification: {spec!r}")

    def _assign(self, topology: Topology) -> tuple[dict["TaskId", int], list[Barrier]]:
        queue_of: dict["TaskId", int] = {}
        tails: list["TaskId | None"] = [None] * self.queue_count
        barriers: list[Barrier] = []
        cursor = 0

        for task_id in topology.order:
            predecessors = topology.predecessors(task_id)
            queue = None

            if len(predecessors) == 1:
                (predecessor,) = predecessors
                if tails[queue_of[predecessor]] == predecessor:
                    queue = queue_of[predecessor]

            if queue is None:
                ancestors = nx.ancestors(topology.digraph, task_id)
                idle = [
                    q
                    for q, tail in enumerate(tails)
                    if tail is None or tail in ancestors
                ] or list(range(self.queue_count))
                queue = next((q for q in idle if q >= cursor), idle[0])
                cursor = (queue + 1) % self.queue_count

            for predecessor in predecessors:
                if queue_of[predecessor] != queue:
                    barriers.append(
                        Barrier(
                            producer=predecessor,
                            consumer=task_id,
                            record_queue=queue_of[predecessor],
                            wait_queue=queue,
                        )
                    )

            queue_of[task_id] = queue
            tails[queue] = task_id

        return queue_of, barriers

    def compile(self, graph: "TaskGraph") -> LaunchPlan:
        topology = self.resolve(graph)

        # lower every task before emitting anything, compile errors abort the plan
        launches: dict["TaskId", list["Launch"]] = {
            task_id: self.expand(task_id, graph.name_of(task_id), graph.spec_of(task_id))
            for task_id in topology.order
        }

        queue_of, barriers = self._assign(topology)
        recorded = {barrier.producer for barrier in barriers}
        waits: dict["TaskId", list[Barrier]] = {}
        for barrier in barriers:
            waits.setdefault(barrier.consumer, []).append(barrier)

        entries: list[PlanEntry] = []
        for task_id in topology.order:
            queue = queue_of[task_id]
            name = graph.name_of(task_id)

            for barrier in waits.get(task_id, []):
                entries.append(
                    PlanEntry(
                        queue=queue,
                        op=WaitEvent(
                            event=barrier.producer, task_id=task_id, task_name=name
                        ),
                    )
                )

            entries.extend(
                PlanEntry(queue=queue, op=launch) for launch in launches[task_id]
            )

            if task_id in recorded:
                entries.append(
                    PlanEntry(
                        queue=queue, op=RecordEvent(event=task_id, task_name=name)
                    )
                )

        plan = LaunchPlan(
            queue_count=self.queue_count,
            entries=tuple(entries),
            barriers=frozenset(barriers),
            topology=topology,
            assignment=queue_of,
        )
        logger.debug(
            "Compiled %d tasks into %d queue operations with %d barriers.",
            len(topology.order),
            len(plan),
            len(barriers),
        )
        return plan
