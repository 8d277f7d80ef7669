import random

import numpy as np
import pytest
from pydantic import ValidationError

from accelflow import Device, GraphCompiler, ReductionPlanner, TaskGraph
from accelflow.exceptions import (
    CyclicGraphError,
    EmptyRangeError,
    InvalidBufferError,
)
from accelflow.launch import RecordEvent, WaitEvent


def _pipeline(device: Device) -> TaskGraph:
    data = device.allocate(64, dtype=np.int64)
    result = device.allocate(1, dtype=np.int64)
    host = np.arange(64, dtype=np.int64)

    graph = TaskGraph()
    h2d = graph.copy(data, host, name="h2d")
    seed = graph.fill(result, 10, name="seed")
    total = graph.reduce(data.begin(), data.end(), result, np.add, name="total")
    d2h = graph.copy(np.zeros(1, dtype=np.int64), result, name="d2h")

    total.succeed(h2d, seed).precede(d2h)
    return graph


def test_cycle_detection(executor):
    graph = TaskGraph()
    a = graph.invoke(print, name="a")
    b = graph.invoke(print, name="b")
    a.precede(b)
    b.precede(a)

    submitted = [queue.submitted for queue in executor.queues]

    with pytest.raises(CyclicGraphError) as exc_info:
        executor.run(graph)

    assert sorted(exc_info.value.cycle) == ["a", "b"]
    assert not graph.compiled
    assert [queue.submitted for queue in executor.queues] == submitted


def test_self_dependency_is_a_cycle():
    graph = TaskGraph()
    a = graph.invoke(print, name="a")
    a.precede(a)

    with pytest.raises(CyclicGraphError):
        graph.compile()


def test_compilation_is_deterministic(device):
    compiler = GraphCompiler(queue_count=3, planner=ReductionPlanner(parallel_width=8))

    first = compiler.compile(_pipeline(device))
    second = compiler.compile(_pipeline(device))

    assert first.schedule() == second.schedule()
    assert first.barriers == second.barriers
    assert first.uuid != second.uuid


def test_chain_shares_a_queue():
    graph = TaskGraph()
    tasks = [graph.invoke(print) for _ in range(5)]
    for pred, succ in zip(tasks, tasks[1:]):
        pred.precede(succ)

    plan = GraphCompiler(queue_count=4).compile(graph)

    assert plan.queues_touched == [0]
    assert not plan.barriers


def test_independent_tasks_spread_across_queues():
    graph = TaskGraph()
    for _ in range(4):
        graph.invoke(print)

    plan = GraphCompiler(queue_count=4).compile(graph)

    assert plan.queues_touched == [0, 1, 2, 3]


def test_fan_in_inserts_barriers(device):
    plan = GraphCompiler(queue_count=4).compile(_pipeline(device))
    entries = list(plan.entries)

    # h2d and seed start on separate queues, the reduction waits on one of them
    assert plan.assignment[0] != plan.assignment[1]
    assert {(b.producer, b.consumer) for b in plan.barriers} & {(0, 2), (1, 2)}

    for barrier in plan.barriers:
        (record,) = [
            i
            for i, e in enumerate(entries)
            if isinstance(e.op, RecordEvent) and e.op.event == barrier.producer
        ]
        waits = [
            i
            for i, e in enumerate(entries)
            if isinstance(e.op, WaitEvent)
            and e.op.event == barrier.producer
            and e.op.task_id == barrier.consumer
        ]

        assert entries[record].queue == barrier.record_queue
        assert all(entries[i].queue == barrier.wait_queue for i in waits)
        assert record < min(waits)


def test_every_edge_is_ordered():
    rng = random.Random(1234)
    graph = TaskGraph()
    tasks = [graph.invoke(print) for _ in range(40)]
    for i, succ in enumerate(tasks):
        for pred in rng.sample(tasks[:i], k=min(i, rng.randint(0, 3))):
            pred.precede(succ)

    plan = GraphCompiler(queue_count=3).compile(graph)
    position = {
        entry.op.task_id: i
        for i, entry in enumerate(plan.entries)
        if entry.op.kind == "invoke"
    }
    crossing = {(b.producer, b.consumer) for b in plan.barriers}

    for pred, succ in graph.edges():
        if plan.assignment[pred] == plan.assignment[succ]:
            assert position[pred] < position[succ]
        else:
            assert (pred, succ) in crossing


def test_single_queue_needs_no_barriers(device):
    plan = GraphCompiler(queue_count=1).compile(_pipeline(device))

    assert plan.queues_touched == [0]
    assert not plan.barriers
    assert [kind for _, kind, _ in plan.schedule()] == [
        "copy",
        "invoke",
        "fold",
        "copy",
    ]


def test_large_reduction_is_two_pass(device):
    plan = GraphCompiler(
        queue_count=1, planner=ReductionPlanner(parallel_width=16)
    ).compile(_pipeline(device))

    assert [kind for _, kind, _ in plan.schedule()] == [
        "copy",
        "invoke",
        "partial_fold",
        "combine",
        "copy",
    ]


def test_uninitialized_empty_range(device):
    data = device.allocate(4)
    calls = []

    graph = TaskGraph()
    graph.uninitialized_reduce(
        data.begin(), data.begin(), device.allocate(1), lambda a, b: calls.append(1)
    )

    with pytest.raises(EmptyRangeError):
        graph.compile()

    assert not graph.compiled
    assert not calls


def test_initialized_empty_range_has_no_launches(device):
    data = device.allocate(4)

    graph = TaskGraph()
    graph.reduce(data.at(2), data.at(2), device.allocate(1), np.add)

    assert len(graph.compile().plan) == 0


@pytest.mark.parametrize(
    "build",
    (
        lambda g, d, r: g.reduce(d.begin(), d.end(), d, np.add),
        lambda g, d, r: g.reduce(d.end(), d.begin(), r, np.add),
        lambda g, d, r: g.reduce(d.begin(), d.end() + 1, r, np.add),
        lambda g, d, r: g.reduce(d.begin(), r.end(), r, np.add),
        lambda g, d, r: g.copy(d, np.zeros(8), 8),
        lambda g, d, r: g.copy(np.zeros(2), d, 4),
        lambda g, d, r: g.copy(np.zeros(4), np.zeros(4)),
        lambda g, d, r: g.copy(d, np.zeros((2, 2))),
    ),
    ids=(
        "result-too-large",
        "reversed-range",
        "range-past-end",
        "mixed-buffers",
        "copy-overflows-destination",
        "copy-overflows-host",
        "host-to-host",
        "multidimensional-host",
    ),
)
def test_invalid_buffers(device, build):
    graph = TaskGraph()
    build(graph, device.allocate(4), device.allocate(1))

    with pytest.raises(InvalidBufferError):
        graph.compile()


def test_deallocated_buffer(device):
    data = device.allocate(4)
    result = device.allocate(1)

    graph = TaskGraph()
    graph.uninitialized_reduce(data.begin(), data.end(), result, np.add)
    device.deallocate(data)

    with pytest.raises(InvalidBufferError, match="deallocated"):
        graph.compile()


def test_host_range_is_rejected(device):
    graph = TaskGraph()
    graph.reduce(np.arange(4), np.arange(4), device.allocate(1), np.add)

    with pytest.raises(InvalidBufferError, match="device memory"):
        graph.compile()


def test_whole_buffers_bound_a_range(device):
    data = device.allocate(16)

    graph = TaskGraph()
    total = graph.reduce(data, data, device.allocate(1), np.add)

    assert total.spec.first == data.begin()
    assert total.spec.last == data.end()
    assert total.spec.count == 16


def test_plan_is_frozen(device):
    plan = _pipeline(device).compile().plan

    with pytest.raises(ValidationError):
        plan.queue_count = 1
