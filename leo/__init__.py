"""LEO alert relay — emergency alert ingestion and real-time fan-out."""

__version__ = "1.0.0"
