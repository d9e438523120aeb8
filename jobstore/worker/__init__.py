"""
Worker module.
Contains the job worker and its handler registry.
"""

from jobstore.worker.main import Worker, run

__all__ = ["Worker", "run"]
