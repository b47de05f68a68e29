"""Format adapters: segment extraction and reinsertion per container format."""

from __future__ import annotations

import io
import json
import logging
import re
import warnings
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from lxml import etree

from . import markup
from .errors import (
    BitextError,
    DuplicateKeyError,
    EmptyDocumentError,
    MalformedDocumentError,
    ParseError,
    SerializationWarning,
    UnsupportedFormatError,
)
from .renderers import (
    DocumentRenderer,
    default_renderer,
    import_docx,
    import_pdf_reader,
)
from .structures import FormatKind, ParsedDocument, Segment


logger = logging.getLogger(__name__)

BLOCK_KEY = "document"

XML_DECLARATION_PATTERN = re.compile(rb"\A(?:\xef\xbb\xbf)?<\?xml\s[^>]*\?>")


def decode_text(data: bytes, format_name: str, role: str = "source file") -> str:
    """Decode UTF-8 bytes, dropping a BOM and normalising line endings."""

    if isinstance(data, str):
        text = data
    else:
        try:
            text = data.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise ParseError(
                format_name, f"the {role} is not valid UTF-8 text ({exc.reason})."
            ) from exc
    return text.replace("\r\n", "\n").replace("\r", "\n")


def _ensure_unique(keys: Sequence[str], format_name: str) -> None:
    seen = set()
    for key in keys:
        if key in seen:
            raise DuplicateKeyError(
                format_name, f"the key '{key}' appears more than once."
            )
        seen.add(key)


class BaseFormatAdapter(ABC):
    """Common base class for format adapters."""

    kind: FormatKind
    format_name: str

    @abstractmethod
    def parse(
        self,
        source: bytes,
        target: Optional[bytes] = None,
    ) -> ParsedDocument:
        """Turn raw source (and optional target) bytes into segments."""

    @abstractmethod
    def serialize(
        self,
        segments: Sequence[Segment],
        envelope: Optional[Any] = None,
    ) -> bytes:
        """Render edited segments back into the container format."""


class KeyValueAdapter(BaseFormatAdapter):
    """Flat JSON objects mapping message keys to strings."""

    kind = FormatKind.KEY_VALUE
    format_name = "JSON"

    def parse(self, source: bytes, target: Optional[bytes] = None) -> ParsedDocument:
        mapping = self._load(source, "source file")
        translations = self._load(target, "target file") if target else {}

        segments = []
        for key, value in mapping.items():
            candidate = translations.get(key)
            segments.append(
                Segment(
                    key=key,
                    original=value,
                    translation=candidate if candidate else "",
                )
            )
        return ParsedDocument(kind=self.kind, segments=segments)

    def serialize(
        self,
        segments: Sequence[Segment],
        envelope: Optional[Any] = None,
    ) -> bytes:
        output = {segment.key: segment.translation for segment in segments}
        text = json.dumps(output, indent=2, ensure_ascii=False) + "\n"
        return text.encode("utf-8")

    def _load(self, data: bytes, role: str) -> Dict[str, str]:
        text = decode_text(data, self.format_name, role)
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as exc:
            raise MalformedDocumentError(
                self.format_name,
                f"the {role} is not valid JSON ({exc.msg} at line {exc.lineno}, "
                f"column {exc.colno}).",
            ) from exc
        if not isinstance(parsed, dict):
            raise MalformedDocumentError(
                self.format_name,
                f"the {role} must contain an object of key/value pairs.",
            )

        mapping: Dict[str, str] = {}
        for key, value in parsed.items():
            if isinstance(value, (dict, list)):
                raise MalformedDocumentError(
                    self.format_name,
                    f"the value of '{key}' in the {role} is nested; only flat "
                    "key/value files are supported.",
                )
            if value is None:
                mapping[key] = ""
            elif isinstance(value, str):
                mapping[key] = value
            else:
                mapping[key] = json.dumps(value)
        return mapping


class LineBlockAdapter(BaseFormatAdapter):
    """Shared scanner for line-oriented formats with a key line per block."""

    header = ""
    ends_at_blank_line = False

    @abstractmethod
    def match_key(self, line: str) -> Optional[str]:
        """Return the key if ``line`` starts a new block."""

    @abstractmethod
    def render_key(self, key: str) -> str:
        """Return the key line written on export."""

    def scan(self, text: str) -> List[Tuple[str, str]]:
        blocks: List[Tuple[str, str]] = []
        current_key: Optional[str] = None
        body: List[str] = []
        closed = False

        for raw_line in text.split("\n"):
            key = self.match_key(raw_line)
            line = raw_line.strip()
            if key is not None:
                if current_key is not None:
                    blocks.append((current_key, " ".join(body)))
                current_key = key
                body = []
                closed = False
            elif current_key is None:
                continue
            elif not line:
                if body and self.ends_at_blank_line:
                    closed = True
            elif not closed:
                body.append(line)

        if current_key is not None:
            blocks.append((current_key, " ".join(body)))
        return blocks

    def parse(self, source: bytes, target: Optional[bytes] = None) -> ParsedDocument:
        blocks = self.scan(decode_text(source, self.format_name))
        _ensure_unique([key for key, _ in blocks], self.format_name)

        translations: Dict[str, str] = {}
        if target:
            translations = dict(
                self.scan(decode_text(target, self.format_name, "target file"))
            )

        segments = [
            Segment(key=key, original=text, translation=translations.get(key, ""))
            for key, text in blocks
        ]
        logger.debug("Parsed %d %s blocks.", len(segments), self.format_name)
        return ParsedDocument(kind=self.kind, segments=segments)

    def serialize(
        self,
        segments: Sequence[Segment],
        envelope: Optional[Any] = None,
    ) -> bytes:
        warnings.warn(
            f"{self.format_name} export keeps only keys and translated text; "
            "original numbering and styling are not reconstructed.",
            SerializationWarning,
            stacklevel=2,
        )
        parts = [self.header]
        for segment in segments:
            parts.append(f"{self.render_key(segment.key)}\n{segment.translation}\n\n")
        return "".join(parts).encode("utf-8")


class SubtitleCueAdapter(LineBlockAdapter):
    """WebVTT subtitles keyed by their cue timing line."""

    kind = FormatKind.SUBTITLE_CUE
    format_name = "WebVTT"
    delimiter = "-->"
    header = "WEBVTT\n\n"
    ends_at_blank_line = True

    def match_key(self, line: str) -> Optional[str]:
        if self.delimiter in line:
            return line.strip()
        return None

    def render_key(self, key: str) -> str:
        return key


class DelimitedTextAdapter(LineBlockAdapter):
    """Plain text blocks introduced by a ``#KEY:`` marker line."""

    kind = FormatKind.DELIMITED_TEXT
    format_name = "delimited text"
    marker = "#KEY:"

    def match_key(self, line: str) -> Optional[str]:
        if line.startswith(self.marker):
            return line[len(self.marker):].strip()
        return None

    def render_key(self, key: str) -> str:
        return f"{self.marker} {key}"


def _local_name(element: etree._Element) -> Optional[str]:
    if not isinstance(element.tag, str):
        return None
    return etree.QName(element).localname


def _children(element: etree._Element, name: str) -> List[etree._Element]:
    return [child for child in element if _local_name(child) == name]


def _xml_parser() -> etree.XMLParser:
    return etree.XMLParser(
        remove_blank_text=False,
        strip_cdata=False,
        resolve_entities=False,
        no_network=True,
        huge_tree=False,
    )


@dataclass
class InterchangeEnvelope:
    """Parsed XLIFF tree plus the XML declaration bytes it was read with."""

    tree: etree._ElementTree
    declaration: Optional[bytes] = None


class InterchangeAdapter(BaseFormatAdapter):
    """XLIFF 1.2 documents; the envelope is the parsed tree plus its declaration."""

    kind = FormatKind.LOCALIZATION_INTERCHANGE
    format_name = "XLIFF"

    def parse(self, source: bytes, target: Optional[bytes] = None) -> ParsedDocument:
        tree = self._load(source, "source file")

        overrides: Dict[str, str] = {}
        if target:
            target_tree = self._load(target, "target file")
            for unit in self.iter_units(target_tree.getroot()):
                unit_id = unit.get("id")
                targets = _children(unit, "target")
                if unit_id and targets:
                    overrides[unit_id] = markup.extract(
                        markup.node_from_element(targets[0])
                    )

        segments: List[Segment] = []
        for unit in self.iter_units(tree.getroot()):
            unit_id = unit.get("id")
            if not unit_id:
                raise MalformedDocumentError(
                    self.format_name,
                    f"a <trans-unit> on line {unit.sourceline} has no id attribute.",
                )
            original = markup.extract(
                markup.Sequence(
                    [markup.node_from_element(node) for node in _children(unit, "source")]
                )
            )
            if unit_id in overrides:
                translation = overrides[unit_id]
            else:
                targets = _children(unit, "target")
                translation = (
                    markup.extract(markup.node_from_element(targets[0]))
                    if targets
                    else ""
                )
            segments.append(
                Segment(key=unit_id, original=original, translation=translation)
            )

        if not segments:
            raise EmptyDocumentError(
                self.format_name, "no translation units were found in the document."
            )
        _ensure_unique([segment.key for segment in segments], self.format_name)
        logger.debug("Parsed %d XLIFF translation units.", len(segments))
        declaration = XML_DECLARATION_PATTERN.match(source)
        envelope = InterchangeEnvelope(
            tree=tree,
            declaration=declaration.group(0) if declaration else None,
        )
        return ParsedDocument(kind=self.kind, segments=segments, envelope=envelope)

    def serialize(
        self,
        segments: Sequence[Segment],
        envelope: Optional[Any] = None,
    ) -> bytes:
        if not isinstance(envelope, InterchangeEnvelope):
            raise BitextError(
                "XLIFF export needs the parsed source document; load it first."
            )

        tree = self.clone(envelope.tree)
        by_key = {segment.key: segment for segment in segments}
        patched = 0
        for unit in self.iter_units(tree.getroot()):
            segment = by_key.get(unit.get("id"))
            if segment is None:
                continue
            if self._patch_unit(unit, segment):
                patched += 1
        logger.debug("Patched %d XLIFF translation units.", patched)

        encoding = envelope.tree.docinfo.encoding or "UTF-8"
        if envelope.declaration is not None:
            # Re-emit the declaration exactly as read: quoting, standalone, BOM.
            body = etree.tostring(tree, encoding=encoding, xml_declaration=False)
            return envelope.declaration + b"\n" + body
        if encoding.upper().replace("-", "") in ("UTF8", "ASCII", "USASCII"):
            return etree.tostring(tree, encoding="UTF-8", xml_declaration=False)
        return etree.tostring(tree, encoding=encoding, xml_declaration=True)

    def clone(self, tree: etree._ElementTree) -> etree._ElementTree:
        """Deep copy including top-level comments and processing instructions."""

        return etree.fromstring(etree.tostring(tree), _xml_parser()).getroottree()

    def iter_units(self, root: etree._Element) -> Iterator[etree._Element]:
        """Yield every trans-unit in document order, at any grouping depth."""

        if _local_name(root) != "xliff":
            raise MalformedDocumentError(
                self.format_name,
                f"the root element is <{_local_name(root)}>, expected <xliff>.",
            )
        files = _children(root, "file")
        if not files:
            raise MalformedDocumentError(
                self.format_name, "the document has no <file> element."
            )
        for file_element in files:
            bodies = _children(file_element, "body")
            if not bodies:
                raise MalformedDocumentError(
                    self.format_name,
                    f"<file original=\"{file_element.get('original', '')}\"> "
                    "has no <body>.",
                )
            for body in bodies:
                yield from self._walk(body)

    def _walk(self, container: etree._Element) -> Iterator[etree._Element]:
        for child in container:
            name = _local_name(child)
            if name == "trans-unit":
                yield child
            elif name == "group":
                yield from self._walk(child)

    def _load(self, data: bytes, role: str) -> etree._ElementTree:
        if not data or not data.strip():
            raise MalformedDocumentError(self.format_name, f"the {role} is empty.")
        try:
            root = etree.fromstring(data, _xml_parser())
        except etree.XMLSyntaxError as exc:
            raise MalformedDocumentError(
                self.format_name, f"the {role} is not well-formed XML ({exc})."
            ) from exc
        return root.getroottree()

    def _patch_unit(self, unit: etree._Element, segment: Segment) -> bool:
        sources = _children(unit, "source")
        targets = _children(unit, "target")
        if targets:
            target = targets[0]
            current = markup.extract(markup.node_from_element(target))
            if current == segment.translation:
                return False
        else:
            namespace = etree.QName(unit).namespace
            tag = f"{{{namespace}}}target" if namespace else "target"
            target = etree.Element(tag)
            if sources:
                anchor = sources[-1]
                unit.insert(unit.index(anchor) + 1, target)
                target.tail = anchor.tail
            else:
                unit.append(target)

        natives = markup.native_codes(*targets[:1], *sources)
        markup.restore(target, segment.translation, natives)

        if segment.translation:
            source_text = markup.extract(
                markup.Sequence([markup.node_from_element(node) for node in sources])
            )
            translated = {
                markup.placeholder_key(tag)
                for tag in markup.placeholders(segment.translation)
            }
            missing = [
                tag
                for tag in markup.placeholders(source_text)
                if markup.placeholder_key(tag) not in translated
            ]
            if missing:
                warnings.warn(
                    f"Unit '{segment.key}': inline markup {', '.join(missing)} "
                    "is not present in the translation and was not reconstructed.",
                    SerializationWarning,
                    stacklevel=3,
                )
        return True


class BlockAdapter(BaseFormatAdapter):
    """Single-block documents whose export is delegated to a renderer."""

    def __init__(
        self,
        kind: FormatKind,
        renderer: Optional[DocumentRenderer] = None,
    ) -> None:
        if not kind.is_block:
            raise UnsupportedFormatError(f"{kind.value} is not a single-block format.")
        self.kind = kind
        self.format_name = "PDF" if kind is FormatKind.PAGE_DOCUMENT else "Word"
        self.renderer = renderer or default_renderer(kind)

    def parse(self, source: bytes, target: Optional[bytes] = None) -> ParsedDocument:
        original = self._read(source, "source file")
        if not original.strip():
            raise EmptyDocumentError(self.format_name, "the source file has no text.")
        translation = self._read(target, "target file") if target else ""
        return ParsedDocument(
            kind=self.kind,
            segments=[Segment(key=BLOCK_KEY, original=original, translation=translation)],
        )

    def serialize(
        self,
        segments: Sequence[Segment],
        envelope: Optional[Any] = None,
    ) -> bytes:
        text = segments[0].translation if segments else ""
        return self.renderer.render(text)

    def _read(self, data: bytes, role: str) -> str:
        if self.kind is FormatKind.PAGE_DOCUMENT and data.startswith(b"%PDF"):
            return self._read_pdf(data, role)
        if self.kind is FormatKind.RICH_TEXT_DOCUMENT and data.startswith(b"PK"):
            return self._read_docx(data, role)
        return decode_text(data, self.format_name, role).strip("\n")

    def _read_docx(self, data: bytes, role: str) -> str:
        Document = import_docx()
        try:
            document = Document(io.BytesIO(data))
        except Exception as exc:
            raise MalformedDocumentError(
                self.format_name, f"the {role} is not a readable .docx package ({exc})."
            ) from exc
        return "\n".join(paragraph.text for paragraph in document.paragraphs).strip("\n")

    def _read_pdf(self, data: bytes, role: str) -> str:
        PdfReader = import_pdf_reader()
        try:
            reader = PdfReader(io.BytesIO(data))
            pages = [page.extract_text() or "" for page in reader.pages]
        except Exception as exc:
            raise MalformedDocumentError(
                self.format_name, f"the {role} is not a readable PDF ({exc})."
            ) from exc
        logger.debug("Extracted text from %d PDF page(s).", len(pages))
        return "\n\n".join(page.strip() for page in pages).strip("\n")


def get_adapter(
    kind: FormatKind,
    *,
    renderer: Optional[DocumentRenderer] = None,
) -> BaseFormatAdapter:
    """Select the adapter for a format kind."""

    if kind is FormatKind.KEY_VALUE:
        return KeyValueAdapter()
    if kind is FormatKind.SUBTITLE_CUE:
        return SubtitleCueAdapter()
    if kind is FormatKind.DELIMITED_TEXT:
        return DelimitedTextAdapter()
    if kind is FormatKind.LOCALIZATION_INTERCHANGE:
        return InterchangeAdapter()
    if kind.is_block:
        return BlockAdapter(kind, renderer=renderer)
    raise UnsupportedFormatError(f"No adapter for format '{kind.value}'.")


def parse(
    kind: FormatKind,
    source: bytes,
    target: Optional[bytes] = None,
) -> ParsedDocument:
    return get_adapter(kind).parse(source, target)


def serialize(
    kind: FormatKind,
    segments: Sequence[Segment],
    envelope: Optional[Any] = None,
    *,
    renderer: Optional[DocumentRenderer] = None,
) -> bytes:
    return get_adapter(kind, renderer=renderer).serialize(segments, envelope)
