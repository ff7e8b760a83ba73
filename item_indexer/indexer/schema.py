"""
Index settings and mappings for item documents.

The mapping is strict: a document carrying a field not listed here is
rejected by the index instead of silently growing the mapping.
"""

from typing import Any, Dict

from ..consumer.models import DimensionName, Lang

ANALYZERS: Dict[Lang, str] = {
    Lang.EN: "english",
    Lang.FR: "french",
}


def _localized(field_mapping) -> Dict[str, Any]:
    """Object with one sub-field per locale, built by ``field_mapping(lang)``."""
    return {
        "properties": {lang.locale_key: field_mapping(lang) for lang in Lang}
    }


def _analyzed_text(lang: Lang, keyword: bool = False) -> Dict[str, Any]:
    mapping: Dict[str, Any] = {"type": "text", "analyzer": ANALYZERS[lang]}
    if keyword:
        mapping["fields"] = {"keyword": {"type": "keyword"}}
    return mapping


def build_mappings() -> Dict[str, Any]:
    """Strict mapping of an IndexDocument."""
    return {
        "dynamic": "strict",
        "properties": {
            "timestamp": {"type": "long"},
            "source": {"type": "keyword"},
            "urls": _localized(lambda lang: {"type": "text"}),
            "name": _localized(lambda lang: _analyzed_text(lang, keyword=True)),
            "description": _localized(lambda lang: _analyzed_text(lang)),
            "categories": _localized(lambda lang: _analyzed_text(lang, keyword=True)),
            "image_urls": {"type": "text"},
            "dimensions": {
                "properties": {
                    name.field_name: {"type": "double"} for name in DimensionName
                }
            },
            "price": _localized(lambda lang: {
                "properties": {
                    "amount": {"type": "double"},
                    "currency": {"type": "keyword"},
                }
            }),
        },
    }


def build_index_config(number_of_shards: int = 1, number_of_replicas: int = 1) -> Dict[str, Any]:
    """Settings and mappings used when creating the item index."""
    return {
        "settings": {
            "index.number_of_shards": number_of_shards,
            "index.number_of_replicas": number_of_replicas,
        },
        "mappings": build_mappings(),
    }
