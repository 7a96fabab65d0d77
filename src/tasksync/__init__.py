"""tasksync - offline-first task store with a rate-limited sync pipeline."""

__version__ = "0.1.0"
