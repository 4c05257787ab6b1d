"""Request-scoped logging context."""

from contextvars import ContextVar
from typing import Optional


# Unique id of the request being handled in the current task
current_uid: ContextVar[Optional[int]] = ContextVar("current_uid", default=None)
