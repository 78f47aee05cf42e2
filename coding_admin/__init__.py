"""Client library for the clinical coding review service."""

__version__ = "0.1.0"
