from .async_client import AsyncThreadsClient
from .sync_client import ThreadsClient

__all__ = ["ThreadsClient", "AsyncThreadsClient"]
