"""xloop: drive external coding agents through implement, review and finalize phases."""

__version__ = "0.1.0"
