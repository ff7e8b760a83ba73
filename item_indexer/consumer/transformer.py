"""
Document transformer for the item indexer.

This module provides:
- Source item to index document transformation
- Locale branching of multi-locale fields
- Currency and dimension mapping
- Deterministic document identity
"""

import logging
import time
from typing import Any, Callable, Dict

from ..core.errors import UnknownDimension, UnsupportedCurrency, UnsupportedLocale
from .models import (
    Currency,
    DimensionName,
    Dimensions,
    IndexDocument,
    Lang,
    SourceItem,
)
from .units import normalize

logger = logging.getLogger(__name__)

LOCALIZED_FIELDS = ("name", "description", "urls", "categories")


def document_id(item: SourceItem) -> str:
    """Identifier of the document built from ``item``, stable across redeliveries."""
    return f"{item.source}-{item.id}"


def build_upsert_body(document: IndexDocument) -> Dict[str, Any]:
    """Wrap a document into a partial-update body that creates it when absent."""
    return {"doc": document.to_dict(), "doc_as_upsert": True}


class DocumentTransformer:
    """
    Transformer from source items to index documents.

    The transformation has no side effects apart from reading the clock. Any
    error aborts the whole item; no partial document is returned.
    """

    def __init__(
        self,
        strict_locale: bool = True,
        strict_currency: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the document transformer.

        Args:
            strict_locale: Fail on unknown languages instead of leaving every locale empty
            strict_currency: Fail on unknown currencies instead of emitting an empty name
            clock: Source of the document timestamp, in epoch seconds
        """
        self.strict_locale = strict_locale
        self.strict_currency = strict_currency
        self.clock = clock

    def transform(self, item: SourceItem) -> IndexDocument:
        """
        Transform a source item into an index document.

        Raises:
            TransformationError: If the item holds a value outside the known sets
        """
        document = IndexDocument(
            timestamp=int(self.clock()),
            source=item.source,
            image_urls=list(item.image_urls),
        )

        self._set_locale_fields(document, item)
        document.dimensions = self._convert_dimensions(item)

        return document

    def _resolve_lang(self, lang: str):
        try:
            return Lang(lang)
        except ValueError:
            if self.strict_locale:
                raise UnsupportedLocale(lang) from None
            logger.warning(f"Unknown locale {lang!r}, no locale will be populated")
            return None

    def _currency_name(self, currency: str) -> str:
        try:
            return Currency(currency).display_name
        except ValueError:
            if self.strict_currency:
                raise UnsupportedCurrency(currency) from None
            logger.warning(f"Unknown currency {currency!r}, emitting an empty name")
            return ""

    def _set_locale_fields(self, document: IndexDocument, item: SourceItem) -> None:
        lang = self._resolve_lang(item.lang)
        if lang is None:
            return

        key = lang.locale_key
        # Fields absent from the item leave their locale slot out
        for field_name in LOCALIZED_FIELDS:
            value = getattr(item, field_name)
            if value is not None:
                setattr(document, field_name, {key: value})

        if item.price is not None:
            document.price = {
                key: {
                    "amount": item.price.amount,
                    "currency": self._currency_name(item.price.currency),
                }
            }

    def _convert_dimensions(self, item: SourceItem) -> Dimensions:
        dimensions = Dimensions()

        for dimension in item.dimensions:
            try:
                name = DimensionName(dimension.name)
            except ValueError:
                raise UnknownDimension(dimension.name) from None

            setattr(dimensions, name.field_name, normalize(dimension.value, dimension.unit))

        return dimensions


# Global transformer instance
default_transformer = DocumentTransformer()


def transform_item(item: SourceItem) -> IndexDocument:
    """Convenience function to transform an item with the default transformer."""
    return default_transformer.transform(item)
