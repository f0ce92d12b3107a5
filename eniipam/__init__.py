"""Warm-pool IP address management for pods backed by elastic network interfaces."""

__version__ = "0.1.0"