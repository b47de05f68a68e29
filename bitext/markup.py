"""Inline markup codec for localization-interchange content.

Source and target elements of a translation unit may carry inline markup:
standalone placeholders such as ``<x id="1"/>``, native-code elements such as
``<ph id="2">{0}</ph>`` and spans such as ``<g id="3">bold</g>``. The codec
turns such content into one editable string in which every inline element is
rendered as a literal tag (native code and span content included), and writes
edited strings back as element content.
"""

from __future__ import annotations

import copy
import html
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union

from lxml import etree


MARKER_TAGS = frozenset({"x", "bx", "ex"})
# Placeholders whose content is the native code they stand for.
CODE_TAGS = frozenset({"ph", "bpt", "ept", "it"})
SPAN_TAGS = frozenset({"g", "mrk"})
PAIRED_TAGS = CODE_TAGS | SPAN_TAGS
INLINE_TAGS = MARKER_TAGS | PAIRED_TAGS

PLACEHOLDER_PATTERN = re.compile(
    r"<(?P<close>/)?(?P<tag>[a-z]+)(?P<attrs>(?:\s+[\w:.-]+=\"[^\"]*\")*)\s*(?P<empty>/)?>"
)
ATTRIBUTE_PATTERN = re.compile(r"([\w:.-]+)=\"([^\"]*)\"")


@dataclass
class Text:
    """Plain text content."""

    value: str


@dataclass
class Sequence:
    """Ordered list of nodes, rendered joined by a single space."""

    items: List["Node"] = field(default_factory=list)


@dataclass
class Marker:
    """Self-closing inline placeholder."""

    tag: str
    attributes: Dict[str, str] = field(default_factory=dict)
    tail: str = ""

    @property
    def id(self) -> str:
        return self.attributes.get("id") or self.attributes.get("mid", "")


@dataclass
class Span:
    """Paired inline element: a span or a native-code placeholder with content."""

    tag: str
    attributes: Dict[str, str] = field(default_factory=dict)
    content: Optional["Element"] = None
    tail: str = ""

    @property
    def id(self) -> str:
        return self.attributes.get("id") or self.attributes.get("mid", "")


@dataclass
class Element:
    """Structured content: leading text followed by inline children."""

    text: str = ""
    inline: List[Union[Marker, Span]] = field(default_factory=list)

    @property
    def markers(self) -> List[Marker]:
        return [child for child in self.inline if isinstance(child, Marker)]

    @property
    def spans(self) -> List[Span]:
        return [child for child in self.inline if isinstance(child, Span)]


Node = Union[str, Text, Sequence, Element, None]


def _render_attributes(attributes: Dict[str, str]) -> str:
    return "".join(
        f' {name}="{html.escape(value, quote=True)}"'
        for name, value in attributes.items()
    )


def extract(node: Node) -> str:
    """Flatten a markup node into a single editable string."""

    if node is None:
        return ""
    if isinstance(node, str):
        return node
    if isinstance(node, Text):
        return node.value or ""
    if isinstance(node, Sequence):
        return " ".join(extract(item) for item in node.items)
    if isinstance(node, Element):
        parts = [node.text or ""]
        for child in node.inline:
            attrs = _render_attributes(child.attributes)
            if isinstance(child, Marker):
                parts.append(f"<{child.tag}{attrs}/>")
            else:
                parts.append(f"<{child.tag}{attrs}>")
                parts.append(extract(child.content))
                parts.append(f"</{child.tag}>")
            parts.append(child.tail or "")
        return "".join(parts)
    return ""


def _local_name(element: etree._Element) -> Optional[str]:
    if not isinstance(element.tag, str):
        return None
    return etree.QName(element).localname


def _has_content(element: etree._Element) -> bool:
    return bool(element.text) or len(element) > 0


def node_from_element(element: Optional[etree._Element]) -> Element:
    """Build the codec's node representation from an lxml element."""

    node = Element()
    if element is None:
        return node
    node.text = element.text or ""

    def _append_text(value: str) -> None:
        if not value:
            return
        if node.inline:
            node.inline[-1].tail += value
        else:
            node.text += value

    for child in element:
        name = _local_name(child)
        attributes = {
            etree.QName(key).localname: value for key, value in child.attrib.items()
        }
        if name in MARKER_TAGS or (name in CODE_TAGS and not _has_content(child)):
            node.inline.append(
                Marker(tag=name, attributes=attributes, tail=child.tail or "")
            )
        elif name in PAIRED_TAGS:
            node.inline.append(
                Span(
                    tag=name,
                    attributes=attributes,
                    content=node_from_element(child),
                    tail=child.tail or "",
                )
            )
        elif name is None:
            # Comments and processing instructions only contribute their tail.
            _append_text(child.tail or "")
        else:
            _append_text("".join(child.itertext()))
            _append_text(child.tail or "")
    return node


def _tokenise(text: str) -> Optional[List[tuple]]:
    """Split text into literal and placeholder tokens, or None if unbalanced."""

    tokens: List[tuple] = []
    stack: List[str] = []
    cursor = 0
    for match in PLACEHOLDER_PATTERN.finditer(text):
        tag = match.group("tag")
        if tag not in INLINE_TAGS:
            continue
        if match.start() > cursor:
            tokens.append(("text", text[cursor:match.start()]))
        cursor = match.end()
        attributes = {
            name: html.unescape(value)
            for name, value in ATTRIBUTE_PATTERN.findall(match.group("attrs") or "")
        }
        if match.group("close"):
            if match.group("attrs") or not stack or stack[-1] != tag:
                return None
            stack.pop()
            tokens.append(("close", tag))
        elif tag in MARKER_TAGS:
            if not match.group("empty"):
                return None
            tokens.append(("marker", tag, attributes))
        elif match.group("empty"):
            tokens.append(("marker", tag, attributes))
        else:
            stack.append(tag)
            tokens.append(("open", tag, attributes))
    if stack:
        return None
    if cursor < len(text):
        tokens.append(("text", text[cursor:]))
    return tokens


def restore(
    target: etree._Element,
    text: str,
    natives: Optional[Dict[Tuple[str, str], etree._Element]] = None,
) -> etree._Element:
    """Write edited text into ``target``, recreating placeholder elements.

    Text that does not form balanced placeholder markup is written literally.
    Attributes of ``target`` are left untouched. Native-code placeholders
    written without content (``<ph id="1"/>``) get the content of the element
    with the same tag and id in ``natives``, see :func:`native_codes`.
    """

    for child in list(target):
        target.remove(child)
    target.text = None

    tokens = _tokenise(text or "")
    if tokens is None:
        target.text = text or ""
        return target

    namespace = etree.QName(target).namespace

    def _qualified(tag: str) -> str:
        return f"{{{namespace}}}{tag}" if namespace else tag

    def _append_text(parent: etree._Element, value: str) -> None:
        if len(parent):
            last = parent[-1]
            last.tail = (last.tail or "") + value
        else:
            parent.text = (parent.text or "") + value

    stack = [target]
    for token in tokens:
        kind = token[0]
        if kind == "text":
            _append_text(stack[-1], token[1])
        elif kind == "marker":
            etree.SubElement(stack[-1], _qualified(token[1]), token[2])
        elif kind == "open":
            stack.append(etree.SubElement(stack[-1], _qualified(token[1]), token[2]))
        else:
            stack.pop()

    if natives:
        _fill_native_codes(target, natives)

    if target.text is None and not len(target):
        target.text = ""
    return target


def native_codes(*elements: etree._Element) -> Dict[Tuple[str, str], etree._Element]:
    """Index native-code placeholders that carry content by ``(tag, id)``.

    Earlier elements win when the same placeholder appears more than once.
    """

    found: Dict[Tuple[str, str], etree._Element] = {}
    for element in elements:
        for child in element.iter():
            name = _local_name(child)
            if name in CODE_TAGS and _has_content(child):
                found.setdefault((name, child.get("id", "")), child)
    return found


def _fill_native_codes(
    target: etree._Element,
    natives: Dict[Tuple[str, str], etree._Element],
) -> None:
    for element in list(target.iter()):
        name = _local_name(element)
        if name not in CODE_TAGS or _has_content(element):
            continue
        original = natives.get((name, element.get("id", "")))
        if original is None:
            continue
        element.text = original.text
        for child in original:
            element.append(copy.deepcopy(child))


def placeholders(text: str) -> List[str]:
    """Return the rendered placeholder tags appearing in ``text``, in order."""

    found = []
    for match in PLACEHOLDER_PATTERN.finditer(text or ""):
        if match.group("close"):
            continue
        tag = match.group("tag")
        if tag in INLINE_TAGS:
            found.append(match.group(0))
    return found


def placeholder_key(tag: str) -> Tuple[str, str]:
    """Identify a rendered placeholder tag by name and id, ignoring its form."""

    match = PLACEHOLDER_PATTERN.match(tag)
    if match is None:
        return ("", tag)
    attributes = dict(ATTRIBUTE_PATTERN.findall(match.group("attrs") or ""))
    return (match.group("tag"), attributes.get("id") or attributes.get("mid", ""))
