"""habitsync: offline-first event sync for habits and notes."""

__version__ = "0.1.0"
