"""Tests for canonical JSON and payload hashing."""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

import pytest

from sourcing_kernel.domain.values import BrandType
from sourcing_kernel.utils.hashing import canonicalize_json, hash_payload


class TestCanonicalJson:

    def test_sorted_and_compact(self):
        assert canonicalize_json({"b": 1, "a": [1, 2]}) == '{"a":[1,2],"b":1}'

    def test_domain_types(self):
        data = {
            "brand": BrandType.OEM,
            "at": datetime(2024, 10, 15, 12, 0, tzinfo=timezone.utc),
            "id": UUID("12345678-1234-5678-1234-567812345678"),
        }
        assert canonicalize_json(data) == (
            '{"at":"2024-10-15T12:00:00+00:00","brand":"oem",'
            '"id":"12345678-1234-5678-1234-567812345678"}'
        )

    def test_unsupported_type(self):
        with pytest.raises(TypeError, match="not JSON serializable"):
            canonicalize_json({"x": object()})


class TestHashPayload:

    def test_key_order_does_not_matter(self):
        assert hash_payload({"a": 1, "b": 2}) == hash_payload({"b": 2, "a": 1})

    def test_decimal_scale_does_not_matter(self):
        assert hash_payload({"price": Decimal("500")}) == hash_payload(
            {"price": Decimal("500.00")}
        )

    def test_value_changes_hash(self):
        assert hash_payload({"price": Decimal("500")}) != hash_payload(
            {"price": Decimal("500.01")}
        )

    def test_is_sha256_hex(self):
        digest = hash_payload({})
        assert len(digest) == 64
        int(digest, 16)
