from typing import TYPE_CHECKING

from networkx import generate_network_text

if TYPE_CHECKING:  # pragma: no cover
    from networkx import DiGraph

    from .task import TaskId


class Topology:
    def __init__(self, *, digraph: "DiGraph", order: list["TaskId"]) -> None:
        self.digraph = digraph
        self.order = order
        self.position: dict["TaskId", int] = {
            task_id: i for i, task_id in enumerate(order)
        }

    def predecessors(self, task_id: "TaskId") -> list["TaskId"]:
        return sorted(self.digraph.predecessors(task_id), key=self.position.__getitem__)

    def __str__(self) -> str:
        return "\n".join(generate_network_text(self.digraph, vertical_chains=True))
