"""JOEL: follow people, functions and organisations in the Journal Officiel."""

__version__ = "0.1.0"
