"""MediaBot: identify, rename and organize movie and TV files."""

__version__ = "0.1.0"
