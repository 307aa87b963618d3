"""agnt - a personal graph-building chat agent."""

__version__ = "0.1.0"
