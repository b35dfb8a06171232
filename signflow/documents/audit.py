"""Audit trail document built with PyMuPDF.

One PDF per completed workflow: a header block, every recipient's step in
order (with the raw form data they submitted) and a manifest of the files
uploaded alongside the workflow. Pages are added as content overflows.
"""


import json
import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any

import fitz

from signflow.core.exceptions import AuditGenerationError
from signflow.documents.codec import (
    ImageDecodeError,
    decode_image_payload,
    decode_raster,
    is_image_payload,
)

logger = logging.getLogger(__name__)

__all__ = ["AuditCompiler"]

_FONT = "helv"
_FONT_BOLD = "hebo"
_BODY_SIZE = 10.0
_HEADING_SIZE = 13.0
_TITLE_SIZE = 18.0
_LINE_GAP = 4.0
_MARGIN = 50.0

_THUMB_MAX_WIDTH = 160.0
_THUMB_MAX_HEIGHT = 60.0

_GREY = (0.4, 0.4, 0.4)


def _fmt_ts(value: datetime | None) -> str:
    if value is None:
        return "-"
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def _fmt_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def _fmt_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str, ensure_ascii=False)


class _PageWriter:
    """Top-down text cursor over a growing fitz.Document."""

    def __init__(self, doc: fitz.Document, paper: str = "a4"):
        self.doc = doc
        self.width, self.height = fitz.paper_size(paper)
        self.page: fitz.Page | None = None
        self.y = 0.0
        self.new_page()

    @property
    def text_width(self) -> float:
        return self.width - 2 * _MARGIN

    def new_page(self) -> None:
        self.page = self.doc.new_page(width=self.width, height=self.height)
        self.y = _MARGIN

    def ensure(self, needed: float) -> None:
        if self.y + needed > self.height - _MARGIN:
            self.new_page()

    def _wrap(self, text: str, fontname: str, size: float, width: float) -> list[str]:
        lines: list[str] = []
        for raw in text.splitlines() or [""]:
            current = ""
            for word in raw.split(" "):
                candidate = f"{current} {word}" if current else word
                if fitz.get_text_length(candidate, fontname=fontname, fontsize=size) <= width:
                    current = candidate
                    continue
                if current:
                    lines.append(current)
                # Hard-break words longer than a full line
                while fitz.get_text_length(word, fontname=fontname, fontsize=size) > width and len(word) > 1:
                    cut = len(word)
                    while cut > 1 and fitz.get_text_length(word[:cut], fontname=fontname, fontsize=size) > width:
                        cut -= 1
                    lines.append(word[:cut])
                    word = word[cut:]
                current = word
            lines.append(current)
        return lines

    def text(
        self,
        text: str,
        *,
        size: float = _BODY_SIZE,
        bold: bool = False,
        indent: float = 0.0,
        color: tuple[float, float, float] = (0, 0, 0),
    ) -> None:
        fontname = _FONT_BOLD if bold else _FONT
        for line in self._wrap(text, fontname, size, self.text_width - indent):
            self.ensure(size + _LINE_GAP)
            self.y += size
            self.page.insert_text(
                (_MARGIN + indent, self.y), line, fontname=fontname, fontsize=size, color=color,
            )
            self.y += _LINE_GAP

    def gap(self, amount: float = 8.0) -> None:
        self.y += amount

    def rule(self) -> None:
        self.ensure(6)
        self.page.draw_line(
            (_MARGIN, self.y + 2), (self.width - _MARGIN, self.y + 2), color=_GREY, width=0.5,
        )
        self.y += 6

    def image(self, data: bytes, width: int, height: int, *, indent: float = 0.0) -> None:
        scale = min(_THUMB_MAX_WIDTH / width, _THUMB_MAX_HEIGHT / height, 1.0)
        w, h = width * scale, height * scale
        self.ensure(h + _LINE_GAP)
        rect = fitz.Rect(_MARGIN + indent, self.y, _MARGIN + indent + w, self.y + h)
        self.page.insert_image(rect, stream=data, keep_proportion=True)
        self.y += h + _LINE_GAP

    def number_pages(self) -> None:
        total = self.doc.page_count
        for index in range(total):
            page = self.doc[index]
            page.insert_text(
                (_MARGIN, self.height - _MARGIN / 2),
                f"Page {index + 1} of {total}",
                fontname=_FONT, fontsize=8, color=_GREY,
            )


class AuditCompiler:
    """Compiles the audit-trail PDF for a completed workflow."""

    title = "Workflow Audit Trail"

    def compile(
        self,
        workflow: Any,
        recipients: Sequence[Any],
        attachments: Sequence[Any] = (),
        *,
        generated_at: datetime | None = None,
    ) -> bytes:
        """Return the audit PDF as bytes. Raises :class:`AuditGenerationError`."""
        try:
            doc = fitz.open()
            try:
                writer = _PageWriter(doc)
                self._header(writer, workflow, generated_at or datetime.now(timezone.utc))
                self._recipients(writer, recipients)
                self._attachments(writer, attachments)
                writer.number_pages()
                output = doc.tobytes(garbage=3, deflate=True)
            finally:
                doc.close()
        except AuditGenerationError:
            raise
        except Exception as exc:
            logger.exception("Audit compilation failed for workflow %s", getattr(workflow, "id", "?"))
            raise AuditGenerationError(f"Audit compilation failed: {exc}") from exc

        logger.info(
            "Audit document compiled for workflow %s (%d recipients, %d attachments, %d bytes)",
            workflow.id, len(recipients), len(attachments), len(output),
        )
        return output

    # -- sections -----------------------------------------------------------

    def _header(self, writer: _PageWriter, workflow: Any, generated_at: datetime) -> None:
        writer.text(self.title, size=_TITLE_SIZE, bold=True)
        writer.gap(4)
        writer.text(f"Workflow: {workflow.external_token}")
        writer.text(f"Source document: {workflow.source_document_ref}")
        writer.text(f"Status: {workflow.status}")
        writer.text(f"Created: {_fmt_ts(workflow.created_at)}")
        writer.text(f"Completed: {_fmt_ts(workflow.completed_at)}")
        writer.text(f"Generated: {_fmt_ts(generated_at)}", color=_GREY)
        if workflow.meta:
            writer.gap(4)
            writer.text("Metadata", bold=True)
            for key, value in workflow.meta.items():
                writer.text(f"{key}: {_fmt_value(value)}", indent=12)
        writer.gap()
        writer.rule()

    def _recipients(self, writer: _PageWriter, recipients: Sequence[Any]) -> None:
        writer.text("Recipients", size=_HEADING_SIZE, bold=True)
        writer.gap(4)
        total = len(recipients)
        for recipient in sorted(recipients, key=lambda r: r.order_index):
            writer.text(
                f"{recipient.order_index + 1} of {total}: {recipient.name} ({recipient.role})",
                bold=True,
            )
            contact = ", ".join(c for c in (recipient.email, recipient.mobile) if c) or "-"
            writer.text(f"Contact: {contact}", indent=12)
            writer.text(f"Status: {recipient.status}", indent=12)
            writer.text(f"Submitted: {_fmt_ts(recipient.submitted_at)}", indent=12)

            form_data = recipient.form_data or {}
            if not form_data:
                writer.text("No form data submitted", indent=12, color=_GREY)
            else:
                writer.text("Form data:", indent=12)
                for key, value in form_data.items():
                    self._form_entry(writer, key, value)
            writer.gap()

    def _form_entry(self, writer: _PageWriter, key: str, value: Any) -> None:
        if not is_image_payload(value):
            writer.text(f"{key}: {_fmt_value(value)}", indent=24)
            return

        writer.text(f"{key}:", indent=24)
        try:
            image = decode_raster(decode_image_payload(value))
            writer.image(image.data, image.width, image.height, indent=36)
        except (ImageDecodeError, RuntimeError, ValueError) as exc:
            logger.warning("Could not embed image for '%s' in audit document: %s", key, exc)
            writer.text("[signature image]", indent=36, color=_GREY)

    def _attachments(self, writer: _PageWriter, attachments: Sequence[Any]) -> None:
        writer.rule()
        writer.text("Attachments", size=_HEADING_SIZE, bold=True)
        writer.gap(4)
        if not attachments:
            writer.text("No attachments", color=_GREY)
            return
        for attachment in attachments:
            writer.text(attachment.original_name, bold=True)
            writer.text(
                f"{_fmt_size(attachment.size)}, {attachment.mime_type}, "
                f"uploaded by {attachment.uploaded_by} on {_fmt_ts(attachment.created_at)}",
                indent=12,
            )
