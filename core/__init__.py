"""Shared runtime pieces for skillfactory: version, configuration, logging."""

__version__ = "0.1.0"
