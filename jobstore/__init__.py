"""
Durable SQL Job Store

A relational job store where many independent workers reserve jobs atomically,
and jobs abandoned by crashed or slow workers are returned to the pool by
lease and stall recovery sweeps.
"""

__version__ = "1.0.0"
