"""Background workers run next to the API by main.py."""
from .assignment_retry import AssignmentRetryWorker

__all__ = ['AssignmentRetryWorker']
