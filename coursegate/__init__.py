"""coursegate - license-gated access to course content."""

__version__ = "0.1.0"
