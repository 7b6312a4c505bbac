"""Matchday: group sports match scheduling service."""

__version__ = "0.1.0"
