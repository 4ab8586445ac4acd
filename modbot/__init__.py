"""Resilient backend communication and caching layer for the moderation bot."""

__version__ = "0.1.0"
