from __future__ import annotations


class AccessControlError(Exception):
    """Base error for the access-control core."""


class CatalogError(AccessControlError):
    """Access policy file is missing or inconsistent."""


class MalformedRequestError(AccessControlError):
    """A permission request is missing required attributes (caller bug)."""


class AttributeLookupError(AccessControlError):
    """Fetching current user attributes from the profile store failed."""
