"""
Unit tests for card_record module.
"""

import json
from datetime import datetime, timezone
from unittest.mock import Mock

import pytest

from card_record import (
    BusinessCard,
    Missing,
    Present,
    extract_card,
    field_from_raw,
    field_value,
)
from image_processing import EncodedImage

EXTRACTION = {
    'name_th': 'สมชาย ใจดี',
    'name_en': 'Somchai Jaidee',
    'company': 'Acme Co., Ltd.',
    'title': 'Sales Manager',
    'phone_mobile': '081-234-5678',
    'phone_office': '',
    'email': 'somchai@acme.example',
    'website': '   ',
    'address': '1 Sukhumvit Rd, Bangkok',
}


class TestCardField:
    """Tests for the Present / Missing variant."""

    @pytest.mark.parametrize('raw', [None, '', '   ', '\n'])
    def test_blank_is_missing(self, raw):
        """Should treat None and blank text as Missing."""
        assert field_from_raw(raw) == Missing()

    def test_value_is_stripped(self):
        """Should keep stripped text as Present."""
        assert field_from_raw('  hello ') == Present('hello')

    def test_field_value_default(self):
        """Should fall back to the default for Missing."""
        assert field_value(Missing(), 'n/a') == 'n/a'
        assert field_value(Present('x')) == 'x'


class TestBusinessCard:
    """Tests for BusinessCard records."""

    def test_from_extraction(self):
        """Should map each extracted key to a CardField."""
        card = BusinessCard.from_extraction(EXTRACTION, category='Clients')

        assert card.name_en == Present('Somchai Jaidee')
        assert card.phone_office == Missing()
        assert card.website == Missing()
        assert card.category == 'Clients'
        assert isinstance(card.created_at, datetime)
        assert card.created_at.tzinfo == timezone.utc

    def test_missing_keys(self):
        """Should treat absent keys as Missing and ignore unknown ones."""
        card = BusinessCard.from_extraction({'email': 'a@b.example', 'fax': '123'})
        assert card.email == Present('a@b.example')
        assert len(card.missing_fields()) == 8
        assert not hasattr(card, 'fax')

    def test_display_name_order(self):
        """Should prefer the English name, then Thai name, then company."""
        assert BusinessCard.from_extraction(EXTRACTION).display_name() == 'Somchai Jaidee'
        assert BusinessCard.from_extraction({'name_th': 'สมชาย'}).display_name() == 'สมชาย'
        assert BusinessCard.from_extraction({'company': 'Acme'}).display_name() == 'Acme'
        assert BusinessCard().display_name() == 'Unnamed card'

    def test_to_dict(self):
        """Should flatten Missing to None and dates to ISO text."""
        card = BusinessCard.from_extraction(EXTRACTION, image_ref='cards/1.jpg')
        data = card.to_dict()

        assert data['company'] == 'Acme Co., Ltd.'
        assert data['phone_office'] is None
        assert data['image_ref'] == 'cards/1.jpg'
        assert datetime.fromisoformat(data['created_at']) == card.created_at

    def test_to_json_keeps_thai(self):
        """Should serialise without escaping Thai text."""
        text = BusinessCard.from_extraction(EXTRACTION).to_json()
        assert 'สมชาย ใจดี' in text
        assert json.loads(text)['name_th'] == 'สมชาย ใจดี'


class TestExtractCard:
    """Tests for extract_card."""

    def test_passes_bytes_and_mime_type(self):
        """Should hand the encoded bytes and mime type to the extractor."""
        extractor = Mock()
        extractor.extract.return_value = EXTRACTION
        encoded = EncodedImage(b'\xff\xd8jpeg', 'image/jpeg')

        card = extract_card(extractor, encoded, category='Partners')

        extractor.extract.assert_called_once_with(b'\xff\xd8jpeg', 'image/jpeg')
        assert card.title == Present('Sales Manager')
        assert card.category == 'Partners'

    def test_rejects_non_mapping(self):
        """Should raise TypeError when the extractor returns the wrong type."""
        extractor = Mock()
        extractor.extract.return_value = ['not', 'a', 'mapping']
        with pytest.raises(TypeError):
            extract_card(extractor, EncodedImage(b'', 'image/png'))
