import io
import logging
import re

import chardet
from docx import Document as DocxDocument
from pdfminer.high_level import extract_text as pdf_extract

from ..errors import EmptyContent, ParseFailure, UnsupportedFormat
from ..models import SUPPORTED_FORMATS

logger = logging.getLogger(__name__)

_INLINE_SPACE = re.compile(r"[^\S\n]+")
_BLANK_LINES = re.compile(r"\n{3,}")


def format_from_filename(filename: str) -> str:
    _, dot, ext = filename.rpartition(".")
    return ext.lower() if dot else ""


def normalize_text(text: str) -> str:
    """Collapse whitespace runs to one space and allow at most one blank line in a row."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _INLINE_SPACE.sub(" ", text)
    text = "\n".join(line.strip() for line in text.split("\n"))
    text = _BLANK_LINES.sub("\n\n", text)
    return text.strip()


def _decode(content: bytes) -> str:
    try:
        return content.decode("utf-8")
    except UnicodeDecodeError:
        pass
    # chardet guesses poorly on short CJK input, so it only sees non-UTF-8 bytes
    enc = chardet.detect(content).get("encoding") or "utf-8"
    try:
        return content.decode(enc, errors="replace")
    except LookupError:
        return content.decode("utf-8", errors="replace")


class DocumentParser:
    """Turns uploaded bytes into cleaned plain text."""

    supported_formats = SUPPORTED_FORMATS

    def parse(self, content: bytes, fmt: str) -> str:
        fmt = (fmt or "").lower()
        if fmt not in self.supported_formats:
            raise UnsupportedFormat(
                f"Unsupported file type: {fmt or '(none)'}",
                context={"format": fmt, "allowed": list(self.supported_formats)},
            )

        try:
            if fmt == "pdf":
                raw = pdf_extract(io.BytesIO(content))
            elif fmt in ("docx", "doc"):
                doc = DocxDocument(io.BytesIO(content))
                raw = "\n".join(p.text for p in doc.paragraphs)
            else:
                raw = _decode(content)
        except Exception as e:
            # pdfminer and python-docx raise a wide range of their own errors
            logger.warning("Failed to parse %s document: %s", fmt, e)
            raise ParseFailure(f"Failed to parse {fmt}: {e}", context={"format": fmt}) from e

        text = normalize_text(raw or "")
        if not text:
            raise EmptyContent("Document contains no extractable text", context={"format": fmt})

        logger.info("Parsed %s document: %d chars", fmt, len(text))
        return text
