"""Cronograma - draft/published schedule synchronization core."""
__version__ = "0.1.0"
