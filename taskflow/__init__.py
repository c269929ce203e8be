"""Taskflow: task management with a recurring-task engine."""

__version__ = "1.0.0"
