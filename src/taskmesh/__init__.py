"""taskmesh: capability-routed multi-agent task coordination."""

__version__ = "0.1.0"
