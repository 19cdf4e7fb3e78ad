"""Jobs module for scheduled tasks."""

from src.jobs import scheduler

__all__ = ["scheduler"]
