"""Storyloom: turn-based interactive fiction generated by LLM providers."""

__version__ = "0.1.0"
