"""Endgame - near-resolution prediction market bot."""

__version__ = "0.1.0"
