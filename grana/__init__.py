"""GranaStream client session and token lifecycle."""

__version__ = "0.1.0"
