"""Exception types shared across agentwatch."""
from __future__ import annotations


class AgentwatchError(Exception):
    """Base class for agentwatch failures."""


class DiscoveryError(AgentwatchError):
    """A discovery source could not be read at all."""


class ArchiveUnavailableError(AgentwatchError):
    """The archival session store could not be queried."""


class FrontmatterParseError(AgentwatchError, ValueError):
    """Raised when markdown frontmatter is missing or cannot be edited."""
