"""Hold a key, speak, release: the words land in the focused application."""

__version__ = "0.1.0"
