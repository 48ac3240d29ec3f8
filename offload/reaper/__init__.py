"""
Reaper module.
Contains the sweep that times out abandoned jobs.
"""

from offload.reaper.main import Reaper, run

__all__ = ["Reaper", "run"]
