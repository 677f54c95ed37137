"""
Business card records built from text extraction output.

Every extracted field is either Present(value) or Missing(), so callers
never have to guess whether an empty string means "not on the card".
"""

import json
import logging
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Protocol, Union

from image_processing import EncodedImage

logger = logging.getLogger(__name__)

CARD_TEXT_FIELDS = (
    'name_th',
    'name_en',
    'company',
    'title',
    'phone_mobile',
    'phone_office',
    'email',
    'website',
    'address',
)

DEFAULT_CATEGORY = 'Uncategorized'


@dataclass(frozen=True)
class Present:
    value: str


@dataclass(frozen=True)
class Missing:
    pass


CardField = Union[Present, Missing]


def field_from_raw(raw: Any) -> CardField:
    """Map a raw extracted value to a CardField; None and blank strings are Missing."""
    if raw is None:
        return Missing()
    text = str(raw).strip()
    if not text:
        return Missing()
    return Present(text)


def field_value(card_field: CardField, default: str = '') -> str:
    if isinstance(card_field, Present):
        return card_field.value
    return default


@dataclass(frozen=True)
class BusinessCard:
    """Contact details read off one business card."""

    name_th: CardField = field(default_factory=Missing)
    name_en: CardField = field(default_factory=Missing)
    company: CardField = field(default_factory=Missing)
    title: CardField = field(default_factory=Missing)
    phone_mobile: CardField = field(default_factory=Missing)
    phone_office: CardField = field(default_factory=Missing)
    email: CardField = field(default_factory=Missing)
    website: CardField = field(default_factory=Missing)
    address: CardField = field(default_factory=Missing)
    category: str = DEFAULT_CATEGORY
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    image_ref: Optional[str] = None

    @classmethod
    def from_extraction(cls, payload: Mapping[str, Any], category: str = DEFAULT_CATEGORY,
                        image_ref: Optional[str] = None) -> 'BusinessCard':
        """
        Build a card from an extractor's key/value output.

        Unknown keys are ignored; absent or blank keys become Missing.
        """
        unknown = set(payload) - set(CARD_TEXT_FIELDS)
        if unknown:
            logger.debug("Ignoring unknown extraction keys: %s", sorted(unknown))

        values = {name: field_from_raw(payload.get(name)) for name in CARD_TEXT_FIELDS}
        return cls(category=category or DEFAULT_CATEGORY, image_ref=image_ref, **values)

    def display_name(self) -> str:
        """English name, then Thai name, then company, else a placeholder."""
        for candidate in (self.name_en, self.name_th, self.company):
            if isinstance(candidate, Present):
                return candidate.value
        return 'Unnamed card'

    def missing_fields(self):
        return [name for name in CARD_TEXT_FIELDS if isinstance(getattr(self, name), Missing)]

    def to_dict(self) -> Dict[str, Any]:
        """Flatten to plain values; Missing fields become None."""
        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, Present):
                value = value.value
            elif isinstance(value, Missing):
                value = None
            elif isinstance(value, datetime):
                value = value.isoformat()
            data[f.name] = value
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


class CardExtractor(Protocol):
    """Anything that can read card text out of encoded image bytes."""

    def extract(self, data: bytes, mime_type: str) -> Mapping[str, Any]:
        ...


def extract_card(extractor: CardExtractor, encoded: EncodedImage,
                 category: str = DEFAULT_CATEGORY,
                 image_ref: Optional[str] = None) -> BusinessCard:
    """Run an extractor over an encoded card image and wrap the result."""
    payload = extractor.extract(encoded.data, encoded.mime_type)
    if not isinstance(payload, Mapping):
        raise TypeError(f"Extractor returned {type(payload).__name__}, expected a mapping")
    card = BusinessCard.from_extraction(payload, category=category, image_ref=image_ref)
    logger.info("Extracted card '%s' (%d fields missing)",
                card.display_name(), len(card.missing_fields()))
    return card
