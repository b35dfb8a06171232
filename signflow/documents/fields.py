"""Field matching and signature placement.

Maps the merged form data of a finished workflow onto the fillable fields of
the source PDF:

* reserved names are blanked and locked, whatever the data says;
* text, checkbox and choice fields receive their values;
* signature images (``data:image/...`` payloads) are drawn into the field's
  rectangle, or onto the last page when the rectangle cannot be resolved,
  and degrade to a plain-text marker if drawing is impossible.

Nothing in here touches the database; callers pass plain dicts and bytes.
"""


import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

import fitz

from signflow.core.config import Settings, settings
from signflow.core.exceptions import DocumentGenerationError
from signflow.documents.codec import (
    FieldKind,
    FieldLookupError,
    FormField,
    ImageDecodeError,
    PdfFormDocument,
    RasterImage,
    decode_image_payload,
    decode_raster,
    is_image_payload,
)

logger = logging.getLogger(__name__)

__all__ = [
    "FieldClassifier",
    "FieldFiller",
    "FieldRole",
    "FillReport",
    "SignaturePlacementError",
    "SignaturePlacer",
    "fill_and_flatten",
    "fit_signature_rect",
    "merge_form_data",
]

_TRUTHY_STRINGS = {"true", "yes"}

# Last-page fallback geometry (points)
_FALLBACK_MAX_WIDTH = 200.0
_FALLBACK_WIDTH_RATIO = 0.3
_FALLBACK_RIGHT_MARGIN = 50.0
_FALLBACK_BOTTOM_MARGIN = 100.0


class SignaturePlacementError(Exception):
    """Internal: a signature image could not be drawn by any strategy."""


class FieldRole:
    TEXT = "text"
    SIGNATURE = "signature"
    RESERVED = "reserved"
    CHECKBOX = "checkbox"
    CHOICE = "choice"
    IGNORED = "ignored"


# ---------------------------------------------------------------------------
# Merging
# ---------------------------------------------------------------------------

def merge_form_data(recipients: Iterable[Any]) -> dict[str, Any]:
    """Fold each completed recipient's form data in ascending order_index.

    Later recipients win on key collisions.
    """
    merged: dict[str, Any] = {}
    for recipient in sorted(recipients, key=lambda r: r.order_index):
        if getattr(recipient, "status", "completed") != "completed":
            continue
        if recipient.form_data:
            merged.update(recipient.form_data)
    return merged


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FieldClassifier:
    """Decides how a document field is treated, independent of the value.

    ``reserved_names`` match the whole field name, case-insensitively.
    ``signature_patterns`` match as case-insensitive substrings.
    """

    reserved_names: frozenset[str] = frozenset({"kbup"})
    signature_patterns: tuple[str, ...] = ("sign", "auth")

    @classmethod
    def from_settings(cls, cfg: Settings = settings) -> "FieldClassifier":
        return cls(
            reserved_names=frozenset(n.lower() for n in cfg.reserved_field_names),
            signature_patterns=tuple(p.lower() for p in cfg.signature_field_patterns),
        )

    def is_reserved(self, name: str) -> bool:
        return name.lower() in self.reserved_names

    def looks_like_signature(self, name: str) -> bool:
        lowered = name.lower()
        return any(p in lowered for p in self.signature_patterns)

    def classify(self, form_field: FormField) -> str:
        if self.is_reserved(form_field.name):
            return FieldRole.RESERVED
        if form_field.kind == FieldKind.CHECKBOX:
            return FieldRole.CHECKBOX
        if form_field.kind in (FieldKind.CHOICE, FieldKind.RADIO):
            return FieldRole.CHOICE
        if form_field.kind == FieldKind.SIGNATURE:
            return FieldRole.SIGNATURE
        if form_field.kind == FieldKind.TEXT:
            if self.looks_like_signature(form_field.name):
                return FieldRole.SIGNATURE
            return FieldRole.TEXT
        if self.looks_like_signature(form_field.name):
            return FieldRole.SIGNATURE
        return FieldRole.IGNORED


# ---------------------------------------------------------------------------
# Signature placement
# ---------------------------------------------------------------------------

def fit_signature_rect(
    field_rect: fitz.Rect, image: RasterImage, min_width: float, min_height: float,
) -> fitz.Rect:
    """Aspect-preserving box for *image*, centered on *field_rect*.

    The bounding box is ``max(field, minimum)`` in each dimension, so a
    degenerate field still gets a legible signature.
    """
    max_w = max(field_rect.width, min_width)
    max_h = max(field_rect.height, min_height)

    draw_w = max_w
    draw_h = max_w / image.aspect
    if draw_h > max_h:
        draw_h = max_h
        draw_w = max_h * image.aspect

    x0 = field_rect.x0 + (field_rect.width - draw_w) / 2
    y0 = field_rect.y0 + (field_rect.height - draw_h) / 2
    return fitz.Rect(x0, y0, x0 + draw_w, y0 + draw_h)


def fallback_signature_rect(page_width: float, page_height: float, image: RasterImage) -> fitz.Rect:
    """Bottom-right box on a page, sized from the page width."""
    width = min(_FALLBACK_MAX_WIDTH, page_width * _FALLBACK_WIDTH_RATIO)
    height = width / image.aspect
    x0 = page_width - width - _FALLBACK_RIGHT_MARGIN
    y1 = page_height - _FALLBACK_BOTTOM_MARGIN
    return fitz.Rect(x0, y1 - height, x0 + width, y1)


@dataclass
class SignaturePlacer:
    min_width: float = 150.0
    min_height: float = 40.0
    fallback_text: str = "*** DIGITALLY SIGNED ***"

    @classmethod
    def from_settings(cls, cfg: Settings = settings) -> "SignaturePlacer":
        return cls(
            min_width=cfg.signature_min_width,
            min_height=cfg.signature_min_height,
            fallback_text=cfg.signature_fallback_text,
        )

    def place(self, document: PdfFormDocument, form_field: FormField, payload: str) -> str:
        """Draw the signature; return ``"field"``, ``"last_page"`` or ``"text_marker"``.

        Never raises: every failure ends in the text marker.
        """
        try:
            image = decode_raster(decode_image_payload(payload))
            strategy = self._draw(document, form_field.name, image)
        except (ImageDecodeError, SignaturePlacementError) as exc:
            logger.warning(
                "Signature for field '%s' could not be embedded (%s); writing text marker",
                form_field.name, exc,
            )
            self._write_marker(document, form_field)
            return "text_marker"

        if form_field.kind == FieldKind.TEXT:
            document.set_text(form_field.name, "")
        return strategy

    def _draw(self, document: PdfFormDocument, name: str, image: RasterImage) -> str:
        try:
            placements = list(document.field_geometry(name))
        except FieldLookupError as exc:
            logger.info("Field position for '%s' unavailable (%s); using last page", name, exc)
            placements = []

        drawn = 0
        for page_index, rect in placements:
            target = fit_signature_rect(rect, image, self.min_width, self.min_height)
            try:
                document.draw_image(page_index, target, image)
            except Exception as exc:
                logger.warning(
                    "Drawing signature '%s' on page %d failed: %s", name, page_index + 1, exc,
                )
                continue
            drawn += 1
            logger.info("Signature '%s' placed on page %d at %s", name, page_index + 1, target)
        # Once any widget holds the image the last page must stay untouched
        if drawn:
            return "field"

        try:
            last = document.page_count - 1
            page_w, page_h = document.page_size(last)
            target = fallback_signature_rect(page_w, page_h, image)
            document.draw_image(last, target, image)
        except Exception as exc:
            raise SignaturePlacementError(f"fallback placement failed: {exc}") from exc
        logger.info("Fallback signature '%s' placed on last page at %s", name, target)
        return "last_page"

    def _write_marker(self, document: PdfFormDocument, form_field: FormField) -> None:
        if form_field.kind != FieldKind.TEXT:
            return
        try:
            document.set_text(form_field.name, self.fallback_text)
        except Exception as exc:
            logger.warning("Could not set fallback text for '%s': %s", form_field.name, exc)


# ---------------------------------------------------------------------------
# Filling
# ---------------------------------------------------------------------------

@dataclass
class FillReport:
    total_fields: int = 0
    filled: list[str] = field(default_factory=list)
    hidden: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    signatures: dict[str, str] = field(default_factory=dict)  # name -> strategy
    errors: dict[str, str] = field(default_factory=dict)


def _is_checked(value: Any) -> bool:
    if value is True:
        return True
    return isinstance(value, str) and value.strip().lower() in _TRUTHY_STRINGS


def _preview(value: Any) -> str:
    if is_image_payload(value):
        return "[image data]"
    text = str(value)
    return text if len(text) <= 50 else text[:50] + "..."


@dataclass
class FieldFiller:
    classifier: FieldClassifier = field(default_factory=FieldClassifier)
    placer: SignaturePlacer = field(default_factory=SignaturePlacer)

    @classmethod
    def from_settings(cls, cfg: Settings = settings) -> "FieldFiller":
        return cls(
            classifier=FieldClassifier.from_settings(cfg),
            placer=SignaturePlacer.from_settings(cfg),
        )

    def fill(self, document: PdfFormDocument, data: Mapping[str, Any]) -> FillReport:
        fields = document.fields()
        report = FillReport(total_fields=len(fields))

        matching = sum(1 for f in fields if f.name in data)
        logger.info(
            "Filling %d PDF fields from %d data keys (%d matching)",
            len(fields), len(data), matching,
        )

        for form_field in fields:
            role = self.classifier.classify(form_field)

            if role == FieldRole.RESERVED:
                try:
                    document.clear_and_lock(form_field.name)
                    report.hidden.append(form_field.name)
                except Exception as exc:
                    logger.warning("Could not hide field '%s': %s", form_field.name, exc)
                    report.errors[form_field.name] = str(exc)
                continue

            if form_field.name not in data:
                continue

            value = data[form_field.name]
            try:
                self._apply(document, form_field, role, value, report)
            except Exception as exc:
                logger.warning("Error filling field '%s': %s", form_field.name, exc)
                report.errors[form_field.name] = str(exc)

        logger.info(
            "Filled %d fields, hid %d, placed %d signatures, skipped %d, %d errors",
            len(report.filled), len(report.hidden), len(report.signatures),
            len(report.skipped), len(report.errors),
        )
        return report

    def _apply(
        self,
        document: PdfFormDocument,
        form_field: FormField,
        role: str,
        value: Any,
        report: FillReport,
    ) -> None:
        name = form_field.name
        image = is_image_payload(value)

        if role == FieldRole.SIGNATURE and image:
            report.signatures[name] = self.placer.place(document, form_field, value)
            report.filled.append(name)
            return

        if role == FieldRole.CHECKBOX:
            document.set_checked(name, _is_checked(value))
            report.filled.append(name)
            return

        if role == FieldRole.CHOICE:
            if document.select_option(name, str(value)):
                report.filled.append(name)
            else:
                logger.warning("Option %r not offered by field '%s'", value, name)
                report.skipped.append(name)
            return

        if form_field.kind == FieldKind.TEXT and not image:
            document.set_text(name, "" if value is None else str(value))
            logger.debug("Filled text field '%s' with %r", name, _preview(value))
            report.filled.append(name)
            return

        # Image data for a non-signature text field, or a value the field
        # type cannot hold.
        logger.debug("Skipping field '%s' (%s) for value %s", name, form_field.kind, _preview(value))
        report.skipped.append(name)


def fill_and_flatten(
    source: bytes, data: Mapping[str, Any], filler: FieldFiller | None = None,
) -> tuple[bytes, FillReport]:
    """Fill *source* with *data*, flatten it and return the new PDF bytes.

    Blocking (CPU-bound); async callers run it in a worker thread.
    """
    filler = filler or FieldFiller.from_settings()
    try:
        document = PdfFormDocument.load(source)
    except ValueError as exc:
        raise DocumentGenerationError(str(exc)) from exc

    with document:
        report = filler.fill(document, data)
        try:
            document.flatten()
            output = document.to_bytes()
        except Exception as exc:
            raise DocumentGenerationError(f"Flattening failed: {exc}") from exc

    logger.info("Form flattened (%d bytes)", len(output))
    return output, report
