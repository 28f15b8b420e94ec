"""worldseed — autonomous agents that plan, act and supervise each other."""

__version__ = "0.1.0"
