"""
Producer module.
Contains the job submission and wait API.
"""

from offload.producer.client import JobHandle, Producer

__all__ = ["Producer", "JobHandle"]
