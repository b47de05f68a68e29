"""Segment extraction, batch translation alignment and reinsertion for bilingual files."""

__version__ = "0.1.0"
