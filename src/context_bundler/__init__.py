"""Select files from a local folder or a GitHub branch and bundle them for an LLM."""

__version__ = "0.1.0"
