"""
Error kinds raised by the soil loss workflow.

Each error is raised by the component that first observes the violated
precondition; nothing is retried.
"""


class RusleError(Exception):
    """Base class for every workflow failure."""


class MissingDataError(RusleError, LookupError):
    """An input collection has no records for the requested filter."""


class BasinNotFoundError(RusleError, LookupError):
    """No basin in the catalog carries the requested identifier."""


class AmbiguousBasinError(RusleError, ValueError):
    """More than one basin carries the requested identifier."""


class GridMismatchError(RusleError, ValueError):
    """Rasters that must be co-registered are not."""


class ExportError(RusleError, OSError):
    """An output product could not be written to its destination."""
