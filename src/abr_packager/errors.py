"""Exception taxonomy for the packaging pipeline.

Only batch-level problems are raised as exceptions. Failures of individual
encode jobs travel as ``ErrorDetail`` data and surface through
``PackageResult``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import ErrorDetail


class PackagerError(Exception):
    """Base class for all packager errors."""


class PreconditionError(PackagerError):
    """Input or output location is unusable; nothing was dispatched."""


class ProfileConfigError(PackagerError, ValueError):
    """Rendition profile set is invalid (empty, colliding heights, bad text)."""


class PackagingFailed(PackagerError):
    """A batch finished without producing a manifest."""

    def __init__(self, detail: "ErrorDetail"):
        self.detail = detail
        super().__init__(str(detail))
