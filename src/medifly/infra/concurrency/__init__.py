"""Concurrency gate for outbound embedding calls.

``ModelSemaphore`` bounds how many provider calls run at once (the
provider rate-limits aggressively) and fails fast with
``AcquireTimeout`` when no slot frees up in time.
"""

from .base import AcquireTimeout, SemaphoreBackend
from .semaphore import (
    ModelSemaphore,
    build_semaphore,
    local_semaphore,
)

__all__ = [
    "AcquireTimeout",
    "ModelSemaphore",
    "SemaphoreBackend",
    "build_semaphore",
    "local_semaphore",
]
