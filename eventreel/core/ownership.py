"""
Premium Asset Ownership

Custom intro/outro images and music tracks live in the premium-assets
bucket under a per-owner prefix:

    users/<userId>/<kind>/<file>
    events/<eventId>/<kind>/<file>

A client may only reference objects under its own user prefix or under the
prefix of the event being rendered.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from .errors import AssetOwnershipDenied

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssetOwner:
    """Identity an asset reference is validated against."""

    user_id: Optional[str]
    event_id: Optional[str] = None


class AssetOwnershipValidator(Protocol):
    def validate(self, storage_path: str, owner: Optional[AssetOwner], kind: str) -> str:
        ...


def normalize_storage_path(storage_path: str) -> str:
    """Strip leading slashes and convert backslashes to forward slashes."""
    return str(storage_path).replace("\\", "/").lstrip("/")


class PrefixOwnershipValidator:
    """Accepts paths under the acting user's or event's prefix."""

    def validate(self, storage_path: str, owner: Optional[AssetOwner], kind: str) -> str:
        """
        Validate that storage_path belongs to owner.

        Args:
            storage_path: Path inside the premium-assets bucket
            owner: Acting user/event
            kind: Asset kind ("intro", "outro", "music"), informational

        Returns:
            The normalized storage path

        Raises:
            AssetOwnershipDenied: If the path is invalid or not owned
        """
        if not isinstance(storage_path, str) or not storage_path.strip():
            raise AssetOwnershipDenied("Empty storage path", code="ASSET_PATH_INVALID")

        path = normalize_storage_path(storage_path.strip())

        if ".." in path:
            raise AssetOwnershipDenied("Invalid storage path", code="ASSET_PATH_INVALID")

        if owner is None or not owner.user_id:
            raise AssetOwnershipDenied(
                "User id required to validate asset", code="ASSET_USER_MISSING"
            )

        allowed = [f"users/{owner.user_id}/"]
        if owner.event_id:
            allowed.append(f"events/{owner.event_id}/")

        if not any(path.startswith(prefix) for prefix in allowed):
            logger.warning(
                f"Rejected {kind} asset outside owner prefixes: user={owner.user_id}, "
                f"event={owner.event_id}"
            )
            raise AssetOwnershipDenied("Asset not owned by requester")

        return path
