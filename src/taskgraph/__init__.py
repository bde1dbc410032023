"""taskgraph: dependency-aware task tracking for agents working across sessions."""

__version__ = "0.3.0"
