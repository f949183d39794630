"""Identity collaborator: who owns sessions and bookmarks."""

from __future__ import annotations

from .config import get_config
from .errors import IdentityRequired


def current_identity() -> str:
    """Return the configured investigator id.

    Raises:
        IdentityRequired: If ``EVIDENCE_USER_ID`` is not set.
    """
    user_id = get_config().user_id.strip()
    if not user_id:
        raise IdentityRequired("No investigator identity — set EVIDENCE_USER_ID")
    return user_id
