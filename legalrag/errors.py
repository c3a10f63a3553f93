"""Exceptions raised inside the retrieval core.

These never leave the public entry points; they are raised by one component
and caught at the boundary of the next, where they become degraded results.
"""


class KnowledgeBaseError(Exception):
    """Base class for knowledge-base failures."""


class KnowledgeBaseUnavailableError(KnowledgeBaseError):
    """The KB API could not be reached (connection refused, DNS, timeout)."""


class KnowledgeBaseResponseError(KnowledgeBaseError):
    """The KB API answered with a malformed body or ``success: false``."""


class StructuredQueryError(Exception):
    """The structuring model failed or returned unusable output."""
