"""Byte renderers for single-block document exports."""

from __future__ import annotations

import io
import logging
import pathlib
from abc import ABC, abstractmethod
from typing import Optional

from .errors import BitextError, UnsupportedFormatError
from .structures import FormatKind


logger = logging.getLogger(__name__)

DEFAULT_FONT = "NotoSans-Regular.ttf"

FONT_FILES = {
    # Chinese
    "zh": "NotoSansSC-Regular.otf",
    "yue": "NotoSansSC-Regular.otf",
    "wuu": "NotoSansSC-Regular.otf",
    "cjy": "NotoSansSC-Regular.otf",
    "nan": "NotoSansSC-Regular.otf",
    "hsn": "NotoSansSC-Regular.otf",
    "hak": "NotoSansSC-Regular.otf",
    # Japanese, Korean
    "ja": "NotoSansJP-Regular.otf",
    "ko": "NotoSansKR-Regular.otf",
    # Devanagari
    "hi": "NotoSansDevanagari-Regular.ttf",
    "mr": "NotoSansDevanagari-Regular.ttf",
    "bho": "NotoSansDevanagari-Regular.ttf",
    "mai": "NotoSansDevanagari-Regular.ttf",
    "mag": "NotoSansDevanagari-Regular.ttf",
    "doi": "NotoSansDevanagari-Regular.ttf",
    # Other Indic scripts
    "gu": "NotoSansGujarati-Regular.ttf",
    "ta": "NotoSansTamil-Regular.ttf",
    "te": "NotoSansTelugu-Regular.ttf",
    "kn": "NotoSansKannada-Regular.ttf",
    "ml": "NotoSansMalayalam-Regular.ttf",
    "bn": "NotoSansBengali-Regular.ttf",
    "syl": "NotoSansBengali-Regular.ttf",
    # Arabic script
    "ur": "NotoNaskhArabic-Regular.ttf",
    "ar": "NotoNaskhArabic-Regular.ttf",
    "arz": "NotoNaskhArabic-Regular.ttf",
    "ps": "NotoNaskhArabic-Regular.ttf",
    "fa": "NotoNaskhArabic-Regular.ttf",
    "sd": "NotoNaskhArabic-Regular.ttf",
    # Other scripts
    "am": "NotoSansEthiopic-Regular.ttf",
    "ti": "NotoSansEthiopic-Regular.ttf",
    "my": "NotoSansMyanmar-Regular.ttf",
    "km": "NotoSansKhmer-Regular.ttf",
    "th": "NotoSansThai-Regular.ttf",
    "he": "NotoSansHebrew-Regular.ttf",
    "si": "NotoSansSinhala-Regular.ttf",
}


def font_for_language(language: Optional[str]) -> str:
    """Return the font file name able to render the given language code."""

    if not language:
        return DEFAULT_FONT
    code = language.strip().lower().replace("_", "-").split("-")[0]
    return FONT_FILES.get(code, DEFAULT_FONT)


def import_docx():
    try:
        from docx import Document  # type: ignore
    except ImportError as exc:  # pragma: no cover - import guard
        raise BitextError(
            "python-docx is required to process .docx files. "
            "Install it with `pip install python-docx`."
        ) from exc
    return Document


def import_pdf_reader():
    try:
        from pypdf import PdfReader  # type: ignore
    except ImportError as exc:  # pragma: no cover - import guard
        raise BitextError(
            "pypdf is required to read .pdf files. "
            "Install it with `pip install pypdf`."
        ) from exc
    return PdfReader


def _import_fpdf():
    try:
        from fpdf import FPDF  # type: ignore
    except ImportError as exc:  # pragma: no cover - import guard
        raise BitextError(
            "fpdf2 is required to export PDF files. "
            "Install it with `pip install fpdf2`."
        ) from exc
    return FPDF


class DocumentRenderer(ABC):
    """Lays one block of translated text out as document bytes."""

    extension: str

    @abstractmethod
    def render(self, text: str) -> bytes:
        """Return the encoded document."""


class DocxRenderer(DocumentRenderer):
    """Writes one Word paragraph per line of text."""

    extension = "docx"

    def render(self, text: str) -> bytes:
        Document = import_docx()
        document = Document()
        for paragraph in (text or "").split("\n"):
            document.add_paragraph(paragraph)
        buffer = io.BytesIO()
        document.save(buffer)
        return buffer.getvalue()


class PdfRenderer(DocumentRenderer):
    """Flows text over A4 pages using a language-appropriate font."""

    extension = "pdf"
    FONT_SIZE = 12
    LINE_HEIGHT = 7

    def __init__(
        self,
        *,
        language: Optional[str] = None,
        fonts_dir: Optional[pathlib.Path] = None,
    ) -> None:
        self.language = language
        self.fonts_dir = fonts_dir

    def render(self, text: str) -> bytes:
        FPDF = _import_fpdf()
        pdf = FPDF(format="A4")
        pdf.set_auto_page_break(auto=True, margin=15)
        pdf.add_page()

        font_path = self._font_path()
        if font_path is not None:
            pdf.add_font("Body", fname=str(font_path))
            pdf.set_font("Body", size=self.FONT_SIZE)
        else:
            # Core fonts only cover Latin-1.
            pdf.set_font("Helvetica", size=self.FONT_SIZE)
            text = (text or "").encode("latin-1", "replace").decode("latin-1")

        pdf.multi_cell(0, self.LINE_HEIGHT, text or "")
        return bytes(pdf.output())

    def _font_path(self) -> Optional[pathlib.Path]:
        if self.fonts_dir is None:
            return None
        candidate = pathlib.Path(self.fonts_dir) / font_for_language(self.language)
        if candidate.is_file():
            return candidate
        logger.warning(
            "Font %s not found; falling back to a Latin-1 core font.", candidate
        )
        return None


def default_renderer(
    kind: FormatKind,
    *,
    language: Optional[str] = None,
    fonts_dir: Optional[pathlib.Path] = None,
) -> DocumentRenderer:
    """Select the renderer for a single-block format."""

    if kind is FormatKind.PAGE_DOCUMENT:
        return PdfRenderer(language=language, fonts_dir=fonts_dir)
    if kind is FormatKind.RICH_TEXT_DOCUMENT:
        return DocxRenderer()
    raise UnsupportedFormatError(f"{kind.value} documents are not rendered as blocks.")
