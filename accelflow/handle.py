import warnings
import weakref
from enum import Enum
from typing import TYPE_CHECKING

import anyio.to_thread
import sniffio

if TYPE_CHECKING:  # pragma: no cover
    from concurrent.futures import Future

    from .exceptions import ExecutionFault
    from .execution_plan import LaunchPlan


class RunState(Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAULTED = "faulted"


def _warn_if_pending(future: "Future", run_name: str) -> None:
    if not future.done():
        warnings.warn(
            f"Run '{run_name}' was discarded before completing. Discarding a handle does"
            " not wait for its work.",
            ResourceWarning,
            stacklevel=2,
        )


class RunHandle:
    """
    Completion token for an enqueued launch plan.

    The handle moves from `PENDING` to either `SUCCEEDED` or `FAULTED` once every
    queue the plan touched has drained. Only the first execution fault of a run is
    kept; effects committed before it are not rolled back.
    """

    def __init__(
        self, plan: "LaunchPlan", future: "Future[ExecutionFault | None]"
    ) -> None:
        self.plan = plan
        self._future = future
        self._state = RunState.PENDING
        self._fault: "ExecutionFault | None" = None

        finalizer = weakref.finalize(self, _warn_if_pending, future, str(plan.uuid))
        finalizer.atexit = False

    def _settle(self) -> None:
        if self._state is RunState.PENDING:
            self._fault = self._future.result()
            self._state = RunState.FAULTED if self._fault else RunState.SUCCEEDED

    def done(self) -> bool:
        """Poll for completion without blocking."""
        return self._future.done()

    @property
    def state(self) -> RunState:
        if self.done():
            self._settle()

        return self._state

    @property
    def fault(self) -> "ExecutionFault | None":
        return self._fault if self.state is not RunState.PENDING else None

    def wait(self) -> None:
        """
        Block until the run completes, raising its first execution fault if any.
        Waiting on a completed handle returns (or raises) the stored outcome.
        """
        try:
            sniffio.current_async_library()
            raise RuntimeError(
                "Waiting on a run inside an event loop would block it. Use"
                " `await handle.wait_async()` instead."
            )
        except sniffio.AsyncLibraryNotFoundError:
            pass

        self._outcome()

    async def wait_async(self) -> None:
        """Wait for the run from within an event loop without blocking it."""
        await anyio.to_thread.run_sync(self._future.result)
        self._outcome()

    def _outcome(self) -> None:
        self._settle()

        if self._fault is not None:
            raise self._fault

    def __repr__(self) -> str:
        return f"RunHandle(plan={self.plan.uuid}, state={self.state.value})"
