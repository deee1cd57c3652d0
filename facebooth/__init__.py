"""facebooth: labeled face-sample collection and recognition around an external embedding model."""

__version__ = "0.1.0"
