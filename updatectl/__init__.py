"""updatectl - rolling OS and cluster runtime updates for small clusters."""

__version__ = "0.1.0"
