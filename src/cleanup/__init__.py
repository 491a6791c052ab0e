"""Analytics cleanup: reconciles analytics platform entities against cluster state."""

__version__ = "0.1.0"
