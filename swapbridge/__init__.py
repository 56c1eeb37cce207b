"""Cross-provider swap/bridge quote acquisition and bridge lifecycle service."""

__version__ = "0.1.0"
