"""
Load-balance harness for the task scheduling service.

This package submits a batch of tasks to a running scheduler, observes which
communication device each task is placed on, waits for the batch to drain and
summarises how evenly the work was spread using the population standard
deviation of the per-device task counts.
"""

from .main import main

__all__ = ["main"]
