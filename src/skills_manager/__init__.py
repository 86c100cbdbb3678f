"""Skills Manager: link skill repositories and rules into AI agent platforms."""

__version__ = "0.1.0"
