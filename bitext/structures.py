"""Core data structures for the bitext editor engine."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, List, Optional

from .errors import UnsupportedFormatError


class FormatKind(Enum):
    """Container formats understood by the format adapters."""

    KEY_VALUE = "json"
    LOCALIZATION_INTERCHANGE = "xlf"
    SUBTITLE_CUE = "vtt"
    DELIMITED_TEXT = "txt"
    PAGE_DOCUMENT = "pdf"
    RICH_TEXT_DOCUMENT = "docx"

    @property
    def extension(self) -> str:
        """Canonical file extension, without the leading dot."""

        return self.value

    @property
    def is_block(self) -> bool:
        """True for formats holding a single block of prose."""

        return self in (FormatKind.PAGE_DOCUMENT, FormatKind.RICH_TEXT_DOCUMENT)

    @classmethod
    def parse(cls, name: str) -> "FormatKind":
        normalized = (name or "").strip().lower().lstrip(".").replace("_", "-")
        aliases = {
            "json": cls.KEY_VALUE,
            "key-value": cls.KEY_VALUE,
            "xlf": cls.LOCALIZATION_INTERCHANGE,
            "xliff": cls.LOCALIZATION_INTERCHANGE,
            "vtt": cls.SUBTITLE_CUE,
            "webvtt": cls.SUBTITLE_CUE,
            "txt": cls.DELIMITED_TEXT,
            "text": cls.DELIMITED_TEXT,
            "pdf": cls.PAGE_DOCUMENT,
            "docx": cls.RICH_TEXT_DOCUMENT,
            "word": cls.RICH_TEXT_DOCUMENT,
        }
        try:
            return aliases[normalized]
        except KeyError:
            raise UnsupportedFormatError(
                f"Unknown format '{name}'. Choose one of: "
                + ", ".join(kind.value for kind in cls)
                + "."
            ) from None


@dataclass
class Segment:
    """A single key / original / translation triple."""

    key: str
    original: str
    translation: str = ""

    def with_translation(self, translation: str) -> "Segment":
        return replace(self, translation=translation)


@dataclass
class ParsedDocument:
    """Result of parsing a source file: the segment view plus its envelope."""

    kind: FormatKind
    segments: List[Segment]
    envelope: Optional[Any] = None

    @property
    def keys(self) -> List[str]:
        return [segment.key for segment in self.segments]


@dataclass
class ExportResult:
    """Bytes produced on save together with the suggested filename."""

    filename: str
    data: bytes
    warnings: List[str] = field(default_factory=list)
