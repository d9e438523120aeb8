"""
Reaper module.
Contains the recovery reaper that requeues expired and stalled jobs.
"""

from jobstore.reaper.main import Reaper, run

__all__ = ["Reaper", "run"]
