"""
Item indexer.

Consumes normalized product items from RabbitMQ, converts them into search
documents and upserts them into Elasticsearch in bulk.
"""

__version__ = "1.0.0"
