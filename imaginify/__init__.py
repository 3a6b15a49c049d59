"""Image upload, AI transformation and credit billing service."""

__version__ = "1.0.0"
