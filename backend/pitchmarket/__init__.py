"""
Pitch Market
============

Investment & pitch orchestration engine for multi-team pitch events.
"""

__version__ = "0.1.0"
