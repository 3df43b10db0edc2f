"""Errors raised by for-you collaborators (storage and candidate sources)."""


class ForYouError(Exception):
    """Base class for for-you collaborator failures."""


class StorageError(ForYouError):
    """A profile store could not read or write."""


class StorageAuthorizationError(StorageError):
    """The remote profile store rejected our credentials or scope."""


class CandidateSourceError(ForYouError):
    """A candidate source failed to return a page."""
