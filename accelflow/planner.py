from dataclasses import dataclass
from enum import Enum
from math import ceil
from typing import TYPE_CHECKING

from .exceptions import EmptyRangeError
from .launch import CombineLaunch, FoldLaunch, PartialFoldLaunch
from .task import ReduceMode

if TYPE_CHECKING:  # pragma: no cover
    from .launch import Launch
    from .task import Reduce, TaskId


class ReductionStrategy(Enum):
    SINGLE_PASS = "single_pass"
    TWO_PASS = "two_pass"


@dataclass(frozen=True, slots=True)
class ReductionPlan:
    count: int
    block_size: int
    blocks: tuple[tuple[int, int], ...]

    @property
    def strategy(self) -> ReductionStrategy:
        if len(self.blocks) > 1:
            return ReductionStrategy.TWO_PASS

        return ReductionStrategy.SINGLE_PASS


class ReductionPlanner:
    """
    Partitions a reduction range into blocks sized to the device's parallel width.

    A range that fits in one block is folded in a single pass. Larger ranges are
    folded per block into partials, which a second launch combines into the result.
    """

    def __init__(self, parallel_width: int = 256, max_blocks: int = 1024) -> None:
        if parallel_width < 1 or max_blocks < 1:
            raise ValueError("Parallel width and max blocks must be positive.")

        self.parallel_width = parallel_width
        self.max_blocks = max_blocks

    def plan(self, count: int) -> ReductionPlan:
        if count == 0:
            return ReductionPlan(count=0, block_size=self.parallel_width, blocks=())

        block_size = max(self.parallel_width, ceil(count / self.max_blocks))
        blocks = tuple(
            (start, min(start + block_size, count))
            for start in range(0, count, block_size)
        )
        return ReductionPlan(count=count, block_size=block_size, blocks=blocks)

    def expand(self, task_id: "TaskId", name: str, spec: "Reduce") -> list["Launch"]:
        seeded = spec.mode is ReduceMode.INITIALIZED

        if spec.count == 0:
            if not seeded:
                raise EmptyRangeError(name)

            # identity fold, the result is left untouched
            return []

        plan = self.plan(spec.count)

        if plan.strategy is ReductionStrategy.SINGLE_PASS:
            return [
                FoldLaunch(
                    task_id=task_id,
                    task_name=name,
                    first=spec.first,
                    count=spec.count,
                    result=spec.result,
                    op=spec.op,
                    seeded=seeded,
                )
            ]

        return [
            PartialFoldLaunch(
                task_id=task_id,
                task_name=name,
                first=spec.first,
                blocks=plan.blocks,
                op=spec.op,
            ),
            CombineLaunch(
                task_id=task_id,
                task_name=name,
                result=spec.result,
                op=spec.op,
                seeded=seeded,
            ),
        ]
