"""Version information for changeloop."""

__version__ = "0.3.0"
