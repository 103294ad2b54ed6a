"""Inspect PE images, plan their layout in memory, and report on the local system."""

__version__ = "0.1.0"