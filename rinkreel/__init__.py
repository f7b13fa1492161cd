"""Turn annotated game sessions into captioned highlight videos."""

__version__ = "0.1.0"
