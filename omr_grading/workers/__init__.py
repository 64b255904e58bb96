"""
Package Workers: background threads that keep callers responsive.
"""

from .grading_worker import GradingWorker

__all__ = ['GradingWorker']
