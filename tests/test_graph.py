import numpy as np
import pytest

from accelflow import CopyDirection, Device, TaskGraph
from accelflow.exceptions import (
    FrozenGraphError,
    UncompiledGraphError,
    UnknownTaskError,
)
from accelflow.task import Copy, Invoke


def test_task_ids_are_insertion_indices():
    graph = TaskGraph()

    first = graph.add_task(Invoke(fn=print))
    second = graph.add_task(Invoke(fn=print), name="second")

    assert (first, second) == (0, 1)
    assert graph.name_of(first) == "invoke-0"
    assert graph.name_of(second) == "second"
    assert len(graph) == 2


def test_unknown_task():
    graph = TaskGraph()
    other = TaskGraph()

    task = graph.invoke(print)
    foreign = other.invoke(print)

    with pytest.raises(UnknownTaskError):
        graph.add_dependency(task.id, 7)

    with pytest.raises(UnknownTaskError):
        graph.add_dependency(task, foreign)

    assert graph.num_dependencies == 0


def test_precede_and_succeed():
    graph = TaskGraph()
    a, b, c, d = (graph.invoke(print, name=name) for name in "abcd")

    a.precede(b, c)
    d.succeed(b, c)

    assert graph.successors_of(a) == [b.id, c.id]
    assert graph.predecessors_of(d) == [b.id, c.id]
    assert a.num_successors == 2
    assert d.num_dependents == 2
    assert graph.num_dependencies == 4


def test_duplicate_dependencies_collapse():
    graph = TaskGraph()
    a, b = graph.invoke(print), graph.invoke(print)

    a.precede(b).precede(b)

    assert list(graph.edges()) == [(a.id, b.id)]


def test_compiled_graph_is_frozen():
    graph = TaskGraph()
    a, b = graph.invoke(print), graph.invoke(print)

    assert not graph.compiled

    with pytest.raises(UncompiledGraphError):
        graph.plan

    assert graph.compile() is graph
    assert graph.compiled
    assert str(graph.topology)

    with pytest.raises(FrozenGraphError):
        graph.invoke(print)

    with pytest.raises(FrozenGraphError):
        a.precede(b)


def test_copy_direction_inference():
    device = Device()
    buffer = device.allocate(4)
    host = np.zeros(4)

    graph = TaskGraph()
    h2d = graph.copy(buffer, host)
    d2h = graph.copy(host, buffer.begin(), 2)
    d2d = graph.copy(buffer.at(2), buffer, 2)

    assert isinstance(h2d.spec, Copy)
    assert h2d.spec.direction is CopyDirection.HOST_TO_DEVICE
    assert h2d.spec.count == 4
    assert d2h.spec.direction is CopyDirection.DEVICE_TO_HOST
    assert d2d.spec.direction is CopyDirection.DEVICE_TO_DEVICE


def test_invoke_requires_callable():
    with pytest.raises(TypeError):
        TaskGraph().invoke(42)


def test_fill_and_zero_are_invocations():
    buffer = Device().allocate(8)

    graph = TaskGraph()
    fill = graph.fill(buffer, 1.5)
    zero = graph.zero(buffer.at(4))

    assert isinstance(zero.spec, Invoke)
    assert fill.name == "fill-0"
    assert zero.name == "zero-1"
    assert zero.spec.args == (buffer.at(4), 4)

    with pytest.raises(TypeError):
        graph.zero(np.zeros(4))
