"""
Unit tests for the payload codec.
"""

import pytest

from jobstore.codec import Serializer


class TestSerializer:
    """Tests for Serializer."""

    def test_pack_none(self):
        """Test that an absent payload stays absent."""
        assert Serializer.pack(None) is None

    @pytest.mark.parametrize("blob", [None, ""])
    def test_unpack_empty(self, blob):
        assert Serializer.unpack(blob) is None

    def test_pack_produces_json_text(self):
        packed = Serializer.pack({"a": 1, "b": [True, None]})

        assert isinstance(packed, str)
        assert packed == '{"a":1,"b":[true,null]}'

    def test_nested_payload_survives(self):
        """Test that nested structures come back deep-equal."""
        payload = {
            "user": {"id": 7, "tags": ["x", "y"]},
            "ratio": 0.25,
            "note": "héllo",
            "flags": [],
        }

        assert Serializer.unpack(Serializer.pack(payload)) == payload

    def test_unpack_bytes(self):
        assert Serializer.unpack(b'{"k": "v"}') == {"k": "v"}
