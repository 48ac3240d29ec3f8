"""
Scaling module.
Contains worker pool policies and the controller that applies them.
"""

from offload.scaling.controller import ScalingController, run, spawn_worker_process
from offload.scaling.policies import ElasticPolicy, FixedPolicy, ScalingPolicy, get_policy

__all__ = [
    "ScalingController",
    "ScalingPolicy",
    "FixedPolicy",
    "ElasticPolicy",
    "get_policy",
    "spawn_worker_process",
    "run",
]
