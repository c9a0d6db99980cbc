"""Relay-Bot: Matrix chat relay to a language model."""

__version__ = "0.1.0"
