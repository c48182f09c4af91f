"""DocSmile: dental clinic administration client."""

__version__ = "1.0.0"
