"""
Sentinel: autonomous content ingestion and auto-publish pipeline.
"""

__version__ = "1.0.0"
