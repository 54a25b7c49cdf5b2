"""Guardian - durable associative memory for AI code review."""

__version__ = "0.1.0"
