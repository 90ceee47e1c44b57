"""ralph-dev core: task store, phase sagas, and agent result extraction."""

__version__ = "0.4.0"
