"""QuickMaster: one-click loudness mastering over HTTP."""

__version__ = "0.1.0"
