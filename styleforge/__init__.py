"""StyleForge: style-profile learning and versioning engine."""

__version__ = "1.0.0"
