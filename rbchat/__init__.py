"""rbchat — a terminal chat assistant for working on code with AI backends."""

__version__ = "0.4.0"
