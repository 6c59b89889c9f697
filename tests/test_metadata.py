"""
Metadata URI tests.
"""

import pytest

from eqledger.hardening import InvalidArgument
from eqledger.metadata import MetadataResource, expand_uri
from eqledger.storage import ERC1155_LAYOUT, StorageRegion

URI = "https://api.example.com/metadata/{id}.json"


class TestMetadataResource:
    """Shared URI template."""

    def test_uri_set_at_initialize(self, token):
        assert token.call("uri", 1) == URI

    def test_same_for_every_id(self, token, token_id):
        assert token.call("uri", token_id) == token.call("uri", 0) == URI

    def test_unset_is_empty(self):
        assert MetadataResource(StorageRegion()).uri(5) == ""

    def test_stored_in_erc1155_region(self):
        region = StorageRegion()
        MetadataResource(region).set_uri("ipfs://meta/{id}")
        assert region.load_string(ERC1155_LAYOUT.slot_of("uri")) == "ipfs://meta/{id}"

    def test_non_string_rejected(self):
        with pytest.raises(InvalidArgument):
            MetadataResource(StorageRegion()).set_uri(42)


class TestExpandUri:
    """Client-side ``{id}`` substitution."""

    def test_expands_to_padded_hex(self):
        assert expand_uri("ipfs://x/{id}.json", 0xAB) == "ipfs://x/" + "0" * 62 + "ab.json"

    def test_template_without_placeholder(self):
        assert expand_uri("https://static/meta.json", 7) == "https://static/meta.json"

    def test_invalid_id(self):
        with pytest.raises(InvalidArgument):
            expand_uri(URI, -1)
