"""Supervise many instances of an external proxy binary on a single host."""

__version__ = "0.1.0"
