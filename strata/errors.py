"""Error taxonomy shared by the history store, metadata layer and actions."""

from __future__ import annotations

from pathlib import Path


class StrataError(Exception):
    """Base class for every error raised by strata."""


class StorageAccessError(StrataError):
    """The revision store could not be read from or written to."""

    def __init__(self, message: str, path: Path | str | None = None):
        super().__init__(message)
        self.path = Path(path) if path is not None else None


class MetadataParseError(StrataError):
    """A manifest, channel, provisioning or version file is malformed."""

    def __init__(self, message: str, path: Path | str | None = None):
        super().__init__(message)
        self.path = Path(path) if path is not None else None


class IncompleteBundleError(MetadataParseError):
    """A metadata bundle is missing one or more of its required entries."""


class ArtifactResolutionError(StrataError):
    """The artifact resolver could not produce a concrete artifact."""

    def __init__(self, message: str, missing: list[str] | None = None):
        super().__init__(message)
        self.missing = list(missing or [])


class ProvisioningError(StrataError):
    """The provisioning engine failed to build or merge an installation tree."""


class ArgumentError(StrataError):
    """A precondition on the caller's input was violated. No state was changed."""


class InvalidTransitionError(RuntimeError):
    """Raised when a candidate workflow is driven through an illegal transition."""
