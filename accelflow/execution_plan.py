from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, InstanceOf

from .launch import Launch, QueueOp, RecordEvent, WaitEvent
from .task import TaskId
from .topology import Topology


class PlanEntry(BaseModel):
    queue: int
    op: InstanceOf[Launch] | InstanceOf[RecordEvent] | InstanceOf[WaitEvent]

    model_config = ConfigDict(extra="forbid", frozen=True)


class Barrier(BaseModel):
    """A cross-queue dependency: `consumer` waits on `producer`'s recorded event."""

    producer: TaskId
    consumer: TaskId
    record_queue: int
    wait_queue: int

    model_config = ConfigDict(extra="forbid", frozen=True)


class LaunchPlan(BaseModel):
    uuid: UUID = Field(default_factory=uuid4)
    queue_count: int
    entries: tuple[PlanEntry, ...]
    barriers: frozenset[Barrier]
    topology: InstanceOf[Topology]
    assignment: dict[TaskId, int]

    model_config = ConfigDict(extra="forbid", frozen=True, arbitrary_types_allowed=True)

    @property
    def queues_touched(self) -> list[int]:
        return sorted({entry.queue for entry in self.entries})

    @property
    def events(self) -> set[TaskId]:
        return {barrier.producer for barrier in self.barriers}

    def lanes(self) -> dict[int, list[QueueOp]]:
        """Operations grouped per queue, in submission order."""
        lanes: dict[int, list[QueueOp]] = {}
        for entry in self.entries:
            lanes.setdefault(entry.queue, []).append(entry.op)

        return lanes

    def schedule(self) -> tuple[tuple[int, str, TaskId], ...]:
        return tuple(
            (entry.queue, entry.op.kind, entry.op.task_id) for entry in self.entries
        )

    def __len__(self) -> int:
        return len(self.entries)
