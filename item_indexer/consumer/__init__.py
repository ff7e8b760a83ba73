"""
Consumer package for the item indexer.

This package provides:
- Source item and index document models with a message decoder
- Unit normalization of item dimensions
- Source item to index document transformation
- RabbitMQ consumer with per-message acknowledgement
- Consumer health monitoring and metrics
"""

from .models import (
    Lang,
    Currency,
    DimensionName,
    Unit,
    Dimension,
    Price,
    SourceItem,
    Dimensions,
    IndexDocument,
    decode_source_item,
    source_item_from_dict,
)

from .units import FACTORS, normalize, resolve_unit

from .transformer import (
    DocumentTransformer,
    document_id,
    build_upsert_body,
    transform_item,
)

from .consumer import (
    ConsumerState,
    ConsumerMetrics,
    MessageConsumer,
)

__all__ = [
    # Models
    "Lang",
    "Currency",
    "DimensionName",
    "Unit",
    "Dimension",
    "Price",
    "SourceItem",
    "Dimensions",
    "IndexDocument",
    "decode_source_item",
    "source_item_from_dict",

    # Unit normalization
    "FACTORS",
    "normalize",
    "resolve_unit",

    # Transformer
    "DocumentTransformer",
    "document_id",
    "build_upsert_body",
    "transform_item",

    # Consumer
    "ConsumerState",
    "ConsumerMetrics",
    "MessageConsumer",
]
