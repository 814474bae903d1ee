# src/contentops/repositories/__init__.py
from .job_repository import JobRepository

__all__ = [
    "JobRepository",
]
