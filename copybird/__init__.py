"""Streaming backups and restores through pluggable input, compress, encrypt and output modules."""

__version__ = "0.1.0"