"""Session synchronization module for copbot."""

from .synchronizer import SessionSynchronizer

__all__ = ["SessionSynchronizer"]
