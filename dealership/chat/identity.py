"""
Conversation identity scheme.

A conversation is identified by the buyer, the vehicle listing and the admin
it is held with. The key is self-describing so that any component can
authorize a request from the key alone:

    user_<buyerId>_vehicle_<listingId>_admin_<adminId>

The layout is part of the wire protocol; changing it breaks every client.
"""
import re
from dataclasses import dataclass
from typing import Any, Optional

KEY_FORMAT = "user_{buyer_id}_vehicle_{listing_id}_admin_{admin_id}"

_KEY_RE = re.compile(r"^user_(\d+)_vehicle_(\d+)_admin_(\d+)$")
_BUYER_RE = re.compile(r"user_(\d+)_")
_ADMIN_RE = re.compile(r"admin_(\d+)$")


class InvalidIdentity(ValueError):
    """Raised when a conversation key cannot be built or parsed."""


def _require_id(name: str, value: Any) -> int:
    # bool is an int subclass; True must not pass as id 1
    if value is None or isinstance(value, bool) or not isinstance(value, int):
        raise InvalidIdentity(f"{name} must be a positive integer, got {value!r}")
    if value <= 0:
        raise InvalidIdentity(f"{name} must be a positive integer, got {value!r}")
    return value


@dataclass(frozen=True)
class ConversationKey:
    buyer_id: int
    listing_id: int
    admin_id: int

    def __post_init__(self):
        _require_id("buyer_id", self.buyer_id)
        _require_id("listing_id", self.listing_id)
        _require_id("admin_id", self.admin_id)

    def __str__(self) -> str:
        return KEY_FORMAT.format(
            buyer_id=self.buyer_id,
            listing_id=self.listing_id,
            admin_id=self.admin_id,
        )

    @classmethod
    def parse(cls, key: str) -> "ConversationKey":
        """Parse a serialized key, rejecting anything but the exact layout."""
        if not isinstance(key, str):
            raise InvalidIdentity(f"Conversation key must be a string, got {type(key).__name__}")
        match = _KEY_RE.match(key)
        if match is None:
            raise InvalidIdentity(f"Malformed conversation key: {key!r}")
        buyer_id, listing_id, admin_id = (int(g) for g in match.groups())
        return cls(buyer_id=buyer_id, listing_id=listing_id, admin_id=admin_id)

    @classmethod
    def try_parse(cls, key: Any) -> Optional["ConversationKey"]:
        try:
            return cls.parse(key)
        except InvalidIdentity:
            return None


def derive_key(buyer_id: Any, listing_id: Any, admin_id: Any) -> str:
    return str(ConversationKey(buyer_id=buyer_id, listing_id=listing_id, admin_id=admin_id))


def parse_buyer_id(key: str) -> Optional[int]:
    """Integer following the first ``user_`` marker, up to the next separator."""
    match = _BUYER_RE.search(key or "")
    return int(match.group(1)) if match else None


def parse_admin_id(key: str) -> Optional[int]:
    """Integer following the final ``admin_`` marker, anchored at end of string."""
    match = _ADMIN_RE.search(key or "")
    return int(match.group(1)) if match else None
