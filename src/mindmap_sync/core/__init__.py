"""Backend transport shared by the store adapters and the tool server."""

from .async_utils import run_sync
from .client import BackendClient

__all__ = ["BackendClient", "run_sync"]
