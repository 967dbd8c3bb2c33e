"""
Reaper module.
Returns jobs orphaned in PROCESSING by crashed workers to the queue.
"""

from queuectl.reaper.main import Reaper

__all__ = ["Reaper"]
