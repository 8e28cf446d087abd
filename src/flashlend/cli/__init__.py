"""Command-line interface for the flash-loan protocol."""
