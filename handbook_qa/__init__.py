"""Handbook Q&A: retrieval-augmented answers from school handbooks."""

__version__ = "0.1.0"
