"""
Data model for source items and index documents.

Source items arrive as UTF-8 JSON objects whose enum-typed fields carry the
enum names (``"EN"``, ``"WEIGHT"``, ``"MM"``, ``"EUR"``). Those fields keep the
raw tag as received; the transformer resolves them and reports unknown tags.
"""

import json
import math
from dataclasses import dataclass, field
from enum import Enum
from json import JSONDecodeError
from typing import Any, Dict, List, Optional

from ..core.errors import DecodeError


class Lang(str, Enum):
    """Closed set of item locales."""
    EN = "EN"
    FR = "FR"

    @property
    def locale_key(self) -> str:
        return self.value.lower()


class Currency(str, Enum):
    """Closed set of price currencies."""
    EUR = "EUR"
    USD = "USD"
    GBP = "GBP"
    CHF = "CHF"
    CAD = "CAD"

    @property
    def display_name(self) -> str:
        return self.name


class DimensionName(str, Enum):
    """Known physical quantities, one document field each."""
    HEIGHT = "HEIGHT"
    WIDTH = "WIDTH"
    DEPTH = "DEPTH"
    WEIGHT = "WEIGHT"
    LENGTH = "LENGTH"
    DIAMETER = "DIAMETER"
    VOLUME = "VOLUME"
    THICKNESS = "THICKNESS"

    @property
    def field_name(self) -> str:
        return self.value.lower()


class Unit(str, Enum):
    """Units a dimension value may be expressed in."""
    MM = "MM"
    CM = "CM"
    M = "M"
    MM2 = "MM2"
    CM2 = "CM2"
    M2 = "M2"
    MM3 = "MM3"
    CM3 = "CM3"
    M3 = "M3"
    G = "G"
    KG = "KG"
    L = "L"


@dataclass
class Dimension:
    name: str
    value: float
    unit: str


@dataclass
class Price:
    amount: float
    currency: str


@dataclass
class SourceItem:
    """A normalized product item as produced upstream."""
    source: str
    id: str
    lang: str
    name: Any = None
    description: Any = None
    urls: Any = None
    categories: Any = None
    image_urls: List[str] = field(default_factory=list)
    dimensions: List[Dimension] = field(default_factory=list)
    price: Optional[Price] = None


@dataclass
class Dimensions:
    """Normalized dimensions; a field is None when the item did not carry it."""
    height: Optional[float] = None
    width: Optional[float] = None
    depth: Optional[float] = None
    weight: Optional[float] = None
    length: Optional[float] = None
    diameter: Optional[float] = None
    volume: Optional[float] = None
    thickness: Optional[float] = None

    def to_dict(self) -> Dict[str, float]:
        return {name: value for name, value in self.__dict__.items() if value is not None}


@dataclass
class IndexDocument:
    """Search document built from one source item."""
    timestamp: int
    source: str
    urls: Dict[str, Any] = field(default_factory=dict)
    name: Dict[str, Any] = field(default_factory=dict)
    description: Dict[str, Any] = field(default_factory=dict)
    categories: Dict[str, Any] = field(default_factory=dict)
    image_urls: List[str] = field(default_factory=list)
    dimensions: Dimensions = field(default_factory=Dimensions)
    price: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the JSON body stored in the index."""
        return {
            "timestamp": self.timestamp,
            "source": self.source,
            "urls": dict(self.urls),
            "name": dict(self.name),
            "description": dict(self.description),
            "categories": dict(self.categories),
            "image_urls": list(self.image_urls),
            "dimensions": self.dimensions.to_dict(),
            "price": {locale: dict(value) for locale, value in self.price.items()},
        }


def _is_number(value: Any) -> bool:
    """True for finite JSON numbers; NaN, infinities and booleans are refused."""
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        return False


def _require_string(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise DecodeError(f"Missing or invalid field: {key}")
    return value


def _decode_dimensions(raw: Any) -> List[Dimension]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise DecodeError("Field 'dimensions' must be a list")

    dimensions = []
    seen = set()
    for entry in raw:
        if not isinstance(entry, dict):
            raise DecodeError(f"Invalid dimension entry: {entry!r}")

        name = entry.get("name")
        unit = entry.get("unit")
        value = entry.get("value")
        if not isinstance(name, str) or not isinstance(unit, str) or not _is_number(value):
            raise DecodeError(f"Invalid dimension entry: {entry!r}")
        if name in seen:
            raise DecodeError(f"Duplicate dimension: {name}")

        seen.add(name)
        dimensions.append(Dimension(name=name, value=float(value), unit=unit))

    return dimensions


def _decode_price(raw: Any) -> Optional[Price]:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise DecodeError("Field 'price' must be an object")

    amount = raw.get("amount")
    currency = raw.get("currency")
    if not _is_number(amount) or not isinstance(currency, str):
        raise DecodeError(f"Invalid price: {raw!r}")

    return Price(amount=float(amount), currency=currency)


def source_item_from_dict(data: Dict[str, Any]) -> SourceItem:
    """Build a SourceItem from an already parsed JSON object."""
    if not isinstance(data, dict):
        raise DecodeError("Message body must be a JSON object")

    image_urls = data.get("image_urls") or []
    if not isinstance(image_urls, list) or not all(isinstance(url, str) for url in image_urls):
        raise DecodeError("Field 'image_urls' must be a list of strings")

    return SourceItem(
        source=_require_string(data, "source"),
        id=_require_string(data, "id"),
        lang=_require_string(data, "lang"),
        name=data.get("name"),
        description=data.get("description"),
        urls=data.get("urls"),
        categories=data.get("categories"),
        image_urls=image_urls,
        dimensions=_decode_dimensions(data.get("dimensions")),
        price=_decode_price(data.get("price")),
    )


def decode_source_item(body: bytes) -> SourceItem:
    """
    Decode a message body into a SourceItem.

    Raises:
        DecodeError: If the body is not a valid source item
    """
    if body is None:
        raise DecodeError("Message body is None")

    try:
        data = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, JSONDecodeError) as e:
        raise DecodeError(f"Failed to parse message body: {e}") from e

    return source_item_from_dict(data)
