from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from typing import Any


class AccelflowError(Exception):
    def __init__(self, *args: "Any", **kwargs: "Any") -> None:
        super().__init__(*args, **kwargs)


##
## GRAPH AUTHORING
##


class AuthoringError(AccelflowError):
    def __init__(self, message: str) -> None:
        super().__init__(message)


class UnknownTaskError(AuthoringError):
    def __init__(self, task: "Any") -> None:
        self.task = task
        super().__init__(f"Task '{task}' does not belong to this graph.")


class FrozenGraphError(AuthoringError):
    def __init__(self) -> None:
        super().__init__("Graphs cannot be modified once they have been compiled.")


class CyclicGraphError(AuthoringError):
    def __init__(self, cycle: list[str]) -> None:
        self.cycle = cycle
        super().__init__(
            "Graphs cannot contain dependency cycles. Offending cycle:\n"
            f"  {' -> '.join([*cycle, cycle[0]])}"
        )


class UncompiledGraphError(AccelflowError):
    def __init__(self) -> None:
        super().__init__("Graphs must be compiled before they can be used.")


##
## COMPILATION
##


class CompileError(AccelflowError):
    def __init__(self, message: str) -> None:
        super().__init__(message)


class EmptyRangeError(CompileError):
    def __init__(self, task_name: str) -> None:
        self.task_name = task_name
        super().__init__(
            f"Task '{task_name}' reduces an empty range without an initial value."
        )


class InvalidBufferError(CompileError):
    def __init__(self, task_name: str, reason: str) -> None:
        self.task_name = task_name
        self.reason = reason
        super().__init__(f"Task '{task_name}' has an invalid buffer: {reason}.")


##
## EXECUTION
##


class ExecutionFault(AccelflowError):
    def __init__(self, task_name: str, message: str) -> None:
        self.task_name = task_name
        super().__init__(f"Task '{task_name}' faulted: {message}")


class DeviceAccessError(ExecutionFault):
    pass


class OperatorFault(ExecutionFault):
    pass


class ResourceExhaustedError(ExecutionFault):
    pass


class QueueCapacityError(AccelflowError):
    def __init__(self, required: int, available: int) -> None:
        super().__init__(
            f"Plan requires {required} queues but only {available} are available."
        )


##
## DEVICE MEMORY
##


class BufferAccessError(AccelflowError, IndexError):
    def __init__(self, address: int, reason: str) -> None:
        super().__init__(f"Invalid access to device buffer at {address:#x}: {reason}.")
