"""
Store module.
Contains the Redis connection and key layout.
"""

from offload.store.connection import (
    close_store,
    create_client,
    get_client,
    init_store,
    ping,
    set_client,
)
from offload.store.keys import StoreKeys

__all__ = [
    "create_client",
    "init_store",
    "close_store",
    "get_client",
    "set_client",
    "ping",
    "StoreKeys",
]
