from . import credits, jobs, notifications

__all__ = ["credits", "jobs", "notifications"]
