"""
AOI Module – select the analysis basin from the store's basin catalog.
"""

import logging

from basin_rusle.errors import AmbiguousBasinError, BasinNotFoundError

logger = logging.getLogger(__name__)


def resolve_basin(store, basin_id: int, on_ambiguous: str = "raise"):
    """
    Return the single basin geometry carrying basin_id.

    With on_ambiguous="first" a duplicated identifier resolves to the first
    match instead of raising AmbiguousBasinError.
    """
    matches = store.basins(basin_id)
    if not matches:
        raise BasinNotFoundError(f"No basin with identifier {basin_id}")

    if len(matches) > 1:
        if on_ambiguous != "first":
            raise AmbiguousBasinError(f"{len(matches)} basins share identifier {basin_id}")
        logger.warning(f"[AOI] {len(matches)} basins share identifier {basin_id} – using the first")

    logger.info(f"[AOI] Basin {basin_id} selected")
    return matches[0]
