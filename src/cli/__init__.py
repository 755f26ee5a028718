"""Command-line interface for Cortex Review."""
