from typing import Annotated

from annotated_types import Ge
from pydantic import PositiveInt
from pydantic_settings import BaseSettings, SettingsConfigDict


class Config(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="ACCELFLOW_")

    queue_count: Annotated[int, Ge(1)] = 4
    """Number of hardware queues in the default queue pool."""

    parallel_width: PositiveInt = 256
    """Elements folded by a single reduction block."""

    max_blocks: PositiveInt = 1024
    """Upper bound on reduction blocks; block size grows past the parallel width when
    a range would need more."""

    device_memory: PositiveInt = 1 << 30
    """Bytes of device memory backing `Device()` and `Executor.device`."""
