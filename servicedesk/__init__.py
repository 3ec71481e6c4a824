"""Real-time notification pipeline and reference server for the IT Service Desk."""

__version__ = "0.1.0"
