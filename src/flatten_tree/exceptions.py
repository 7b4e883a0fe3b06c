from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class FlattenTreeError(Exception):
    """Base exception for errors in the flatten_tree module."""

    message: str = "flatten_tree failed."

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class FetchError(FlattenTreeError):
    """Raised when the remote template source cannot deliver templates."""

    url: str = ""
    message: str = "Failed to fetch templates."

    def __str__(self) -> str:
        return f"{self.message} ({self.url})" if self.url else self.message


@dataclass(frozen=True)
class TemplatesUnavailableError(FlattenTreeError):
    """Raised when no usable template set exists (empty cache and failed refresh)."""

    message: str = "No exclusion templates available: the cache is empty and the refresh failed."


@dataclass(frozen=True)
class MissingInputError(FlattenTreeError):
    """Raised when a run is requested without any root folder."""

    message: str = "Error: --folders argument is required. Use --help for more information."


@dataclass(frozen=True)
class OutputSinkError(FlattenTreeError):
    """Raised when the output file cannot be created."""

    path: Path = Path()
    message: str = "Failed to create output file."

    def __str__(self) -> str:
        return f"{self.message}: {self.path}"
