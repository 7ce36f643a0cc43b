"""
Catalog recommender - semantic search over embedded historical records.
Maps a free-text problem description to ranked service-catalog entries.
"""

__version__ = "1.0.0"
