"""Parley: a streaming LLM chat client with approved local tool calls."""

__version__ = "0.1.0"
