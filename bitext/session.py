"""Editing session: owns the segment list of the currently loaded document."""

from __future__ import annotations

import logging
import pathlib
import warnings
from datetime import datetime
from enum import Enum, auto
from typing import Any, Iterable, List, Optional, Set, Tuple

from .aligner import AlignmentReport, apply_reply, build_payload, entry_indices
from .errors import (
    BitextError,
    ErrorCategory,
    ErrorRecord,
    ParseError,
    ProviderConfigurationError,
    ProviderError,
    SerializationWarning,
    TranslationInProgressError,
)
from .formats import get_adapter
from .providers import ProviderResult, TranslationProvider, build_system_prompt
from .renderers import DocumentRenderer
from .structures import ExportResult, FormatKind, ParsedDocument, Segment


logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"


class TaskState(Enum):
    """Lifecycle of the translation request."""

    IDLE = auto()
    IN_FLIGHT = auto()
    SETTLED = auto()


def derive_output_name(
    source_name: Optional[str],
    kind: FormatKind,
    target_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> str:
    """Pick the export filename.

    An existing target filename with the right extension is reused verbatim;
    otherwise the source stem gets a timestamp suffix.
    """

    extension = f".{kind.extension}"
    if target_name:
        target_base = pathlib.PurePath(target_name).name
        if target_base.lower().endswith(extension):
            return target_base
    stem = pathlib.PurePath(source_name).stem if source_name else "translated"
    stamp = (now or datetime.now()).strftime(TIMESTAMP_FORMAT)
    return f"{stem}_{stamp}{extension}"


class DocumentSession:
    """Holds one loaded document, its edits, selection and translation state."""

    def __init__(
        self,
        kind: FormatKind = FormatKind.KEY_VALUE,
        *,
        renderer: Optional[DocumentRenderer] = None,
    ) -> None:
        self.renderer = renderer
        self.messages: List[ErrorRecord] = []
        self.loading = False
        self.state = TaskState.IDLE
        self.last_result: Optional[ProviderResult] = None
        self._reset(kind)

    # --- Loading ----------------------------------------------------------

    def _reset(self, kind: FormatKind) -> None:
        self.kind = kind
        self.segments: List[Segment] = []
        self.envelope: Optional[Any] = None
        self.selection: Set[int] = set()
        self.dirty: Set[int] = set()
        self.source_name: Optional[str] = None
        self.target_name: Optional[str] = None

    def switch_format(self, kind: FormatKind) -> None:
        """Change the active format, discarding the loaded document."""

        self._reset(kind)

    def load(
        self,
        kind: FormatKind,
        source: bytes,
        target: Optional[bytes] = None,
        *,
        source_name: Optional[str] = None,
        target_name: Optional[str] = None,
    ) -> ParsedDocument:
        """Parse a new document, replacing any previous state."""

        self._reset(kind)
        try:
            document = get_adapter(kind, renderer=self.renderer).parse(source, target)
        except ParseError as exc:
            self._record(ErrorCategory.PARSE, str(exc))
            raise

        self.segments = list(document.segments)
        self.envelope = document.envelope
        self.source_name = source_name
        if target_name is None and kind is FormatKind.LOCALIZATION_INTERCHANGE:
            # Interchange files carry their own targets and are saved in place.
            target_name = source_name
        self.target_name = target_name
        logger.info(
            "Loaded %d segment(s) from %s.", len(self.segments), source_name or kind.value
        )
        return document

    # --- Editing ----------------------------------------------------------

    def edit(self, index: int, translation: str) -> Segment:
        if index < 0 or index >= len(self.segments):
            raise IndexError(f"No segment at row {index}.")
        segment = self.segments[index].with_translation(translation)
        self.segments[index] = segment
        self.dirty.add(index)
        return segment

    def toggle(self, index: int) -> bool:
        """Flip the selection of one row and return its new state."""

        if index < 0 or index >= len(self.segments):
            raise IndexError(f"No segment at row {index}.")
        if index in self.selection:
            self.selection.discard(index)
            return False
        self.selection.add(index)
        return True

    def select(self, indices: Iterable[int]) -> None:
        chosen = set(indices)
        entry_indices(self.segments, chosen)
        self.selection = chosen

    def clear_selection(self) -> None:
        self.selection = set()

    @property
    def selected_indices(self) -> List[int]:
        return sorted(self.selection)

    def filter(
        self,
        *,
        key: str = "",
        original: str = "",
        translation: str = "",
    ) -> List[Tuple[int, Segment]]:
        """Return rows whose fields contain the given case-insensitive text."""

        needles = (key.lower(), original.lower(), translation.lower())
        rows = []
        for index, segment in enumerate(self.segments):
            fields = (segment.key, segment.original, segment.translation)
            if all(needle in str(value or "").lower() for needle, value in zip(needles, fields)):
                rows.append((index, segment))
        return rows

    # --- Translation ------------------------------------------------------

    async def translate(
        self,
        provider: TranslationProvider,
        *,
        target_language: Optional[str],
        instructions: Optional[str] = None,
    ) -> AlignmentReport:
        """Translate the selected rows (or all rows) through ``provider``."""

        if self.loading:
            raise TranslationInProgressError(
                "A translation is already running; wait for it to finish."
            )
        if not target_language or not target_language.strip():
            message = "Choose a target language before translating."
            self._record(ErrorCategory.ARGUMENT, message)
            raise ProviderConfigurationError(message)
        if not self.segments:
            raise BitextError("Load a document before translating.")

        selected = self.selected_indices
        indices = entry_indices(self.segments, selected)
        payload = build_payload(self.segments, indices)
        system_prompt = build_system_prompt(target_language, instructions)

        self.loading = True
        self.state = TaskState.IN_FLIGHT
        try:
            try:
                result = await provider.complete(system_prompt=system_prompt, text=payload)
            except Exception as exc:
                logger.exception("Translation request raised.")
                result = ProviderResult(ok=False, error_message=str(exc) or repr(exc))
            self.last_result = result
            self.state = TaskState.SETTLED

            if not result.ok:
                status = f" (status {result.status})" if result.status else ""
                message = f"Translation failed{status}: {result.error_message or 'unknown error'}"
                self._record(ErrorCategory.PROVIDER, message)
                raise ProviderError(message, status=result.status)

            segments, report = apply_reply(
                self.segments, result.text, selected, block=self.kind.is_block
            )
            self.segments = segments
            self.dirty.update(report.applied)
            self.dirty.update(report.failed)
            if report.shortfall:
                self._record(
                    ErrorCategory.ALIGNMENT,
                    f"{len(report.failed)} of {report.sent} row(s) received no "
                    "translation and were marked as failed.",
                )
            return report
        finally:
            self.loading = False
            self.state = TaskState.IDLE

    # --- Export -----------------------------------------------------------

    def export(self, now: Optional[datetime] = None) -> ExportResult:
        """Serialize the current segments into the loaded document's format."""

        if not self.segments:
            raise BitextError("Nothing to export: load a document first.")

        adapter = get_adapter(self.kind, renderer=self.renderer)
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always", SerializationWarning)
            data = adapter.serialize(self.segments, self.envelope)

        notes = []
        for warning in caught:
            if issubclass(warning.category, SerializationWarning):
                notes.append(str(warning.message))
                self._record(ErrorCategory.SERIALIZATION, str(warning.message))
            else:
                warnings.warn_explicit(
                    warning.message, warning.category, warning.filename, warning.lineno
                )

        filename = derive_output_name(
            self.source_name, self.kind, self.target_name, now=now
        )
        return ExportResult(filename=filename, data=data, warnings=notes)

    def _record(self, category: ErrorCategory, message: str) -> None:
        self.messages.append(ErrorRecord(category=category, message=message))
        logger.warning(message)
