"""Pipeline performance analytics and optimization lifecycle engine."""

__version__ = "0.1.0"
