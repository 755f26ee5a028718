"""Cortex Review - timed challenge and spaced review session engine."""
