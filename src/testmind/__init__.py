"""TestMind: self-healing test repair."""

__version__ = "0.1.0"
