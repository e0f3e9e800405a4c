"""Helmsman - a command-line LLM assistant with local tools."""

__version__ = "0.1.0"
