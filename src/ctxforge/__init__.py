"""ctxforge - rank, compose and predict reusable context fragments."""

__version__ = "0.1.0"
