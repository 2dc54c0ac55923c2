"""Task allocation and fault-injection core for multi-agent automation."""

__version__ = "0.1.0"
