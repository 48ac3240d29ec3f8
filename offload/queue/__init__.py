"""
Queue module.
Contains the queue engine and the store scripts it runs.
"""

from offload.queue.engine import QueueEngine

__all__ = ["QueueEngine"]
