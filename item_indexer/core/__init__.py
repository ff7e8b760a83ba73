"""
Core utilities for the item indexer: errors, logging and connection retries.
"""
