"""Grounded study-material generation and spaced-repetition review for PDF course documents."""

__version__ = '1.0.0'
