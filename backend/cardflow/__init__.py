"""
Cardflow - staged enrichment pipeline for user-submitted cards.
"""

__version__ = "0.1.0"
