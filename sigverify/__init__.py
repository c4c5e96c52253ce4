"""Asynchronous signature verification over a Redis work queue."""

__version__ = "0.1.0"
