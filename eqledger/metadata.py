"""
Shared metadata URI.

One template string serves every token id. It is written once during
initialization and returned verbatim by ``uri``; clients that want the
multi-token ``{id}`` substitution can apply ``expand_uri`` themselves.
"""

from __future__ import annotations

from eqledger.hardening import Validators
from eqledger.storage import ERC1155_LAYOUT, StorageLayout, StorageRegion

ID_PLACEHOLDER = "{id}"


class MetadataResource:
    """Metadata URI template stored in the ERC1155 namespace."""

    def __init__(self, region: StorageRegion, layout: StorageLayout = ERC1155_LAYOUT):
        self._region = region
        self._slot = layout.slot_of("uri")

    def set_uri(self, template: str) -> None:
        template = Validators.validate_string(template, "uri", min_length=0).unwrap()
        self._region.store_string(self._slot, template)

    def uri(self, token_id: int = 0) -> str:
        """The shared template, whatever the id."""
        return self._region.load_string(self._slot)


def expand_uri(template: str, token_id: int) -> str:
    """Substitute ``{id}`` with the id as 64 lower-case hex digits."""
    token_id = Validators.validate_uint256(token_id, "id").unwrap()
    return template.replace(ID_PLACEHOLDER, format(token_id, "064x"))
