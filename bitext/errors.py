"""Error definitions for the bitext engine."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional


class ErrorCategory(Enum):
    """Categorises errors surfaced to the user as transient messages."""

    ARGUMENT = auto()
    FILE_IO = auto()
    PARSE = auto()
    ALIGNMENT = auto()
    PROVIDER = auto()
    SERIALIZATION = auto()
    OTHER = auto()


class BitextError(Exception):
    """Base exception for all custom errors."""


class UnsupportedFormatError(BitextError):
    """Raised when a format name or file extension is not supported."""


class ParseError(BitextError):
    """Raised when a source file cannot be turned into segments."""

    def __init__(self, format_name: str, reason: str) -> None:
        super().__init__(f"Could not read {format_name} file: {reason}")
        self.format_name = format_name
        self.reason = reason


class MalformedDocumentError(ParseError):
    """Raised when the container structure of a document is invalid."""


class EmptyDocumentError(ParseError):
    """Raised when a well-formed document holds no translatable units."""


class DuplicateKeyError(ParseError):
    """Raised when two segments of one document share a key."""


class ProviderConfigurationError(BitextError):
    """Raised when the translation provider is misconfigured."""


class ProviderError(BitextError):
    """Raised when the translation provider reports a failure."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class TranslationInProgressError(BitextError):
    """Raised when a translation is requested while another is in flight."""


class SerializationWarning(UserWarning):
    """Known, accepted lossiness of an export."""


@dataclass
class ErrorRecord:
    """Stores context for a handled error."""

    category: ErrorCategory
    message: str
    details: Optional[str] = None
