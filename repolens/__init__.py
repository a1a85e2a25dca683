"""repolens — background research over code repositories."""

__version__ = "0.1.0"
