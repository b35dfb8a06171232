"""
Fillable-PDF codec built on **PyMuPDF** (``fitz``).

Wraps one loaded AcroForm document and exposes only what the completion
pipeline needs: enumerate widgets, write values, lock fields, embed raster
images at page coordinates, bake the form into static content and serialize.

Coordinates are PyMuPDF page coordinates (origin top-left, y grows down).
"""


import base64
import binascii
import logging
from dataclasses import dataclass, field

import fitz

logger = logging.getLogger(__name__)

__all__ = [
    "FieldKind",
    "FieldLookupError",
    "FormField",
    "ImageDecodeError",
    "PdfFormDocument",
    "RasterImage",
    "decode_image_payload",
    "decode_raster",
    "is_image_payload",
]

IMAGE_PAYLOAD_PREFIX = "data:image/"

_PNG_MAGIC = b"\x89PNG\r\n\x1a\n"
_JPEG_MAGIC = b"\xff\xd8\xff"


class FieldKind:
    TEXT = "text"
    CHECKBOX = "checkbox"
    CHOICE = "choice"
    RADIO = "radio"
    SIGNATURE = "signature"
    OTHER = "other"


_WIDGET_KINDS: dict[int, str] = {
    fitz.PDF_WIDGET_TYPE_TEXT: FieldKind.TEXT,
    fitz.PDF_WIDGET_TYPE_CHECKBOX: FieldKind.CHECKBOX,
    fitz.PDF_WIDGET_TYPE_COMBOBOX: FieldKind.CHOICE,
    fitz.PDF_WIDGET_TYPE_LISTBOX: FieldKind.CHOICE,
    fitz.PDF_WIDGET_TYPE_RADIOBUTTON: FieldKind.RADIO,
    fitz.PDF_WIDGET_TYPE_SIGNATURE: FieldKind.SIGNATURE,
}


class FieldLookupError(LookupError):
    """The field's page or rectangle could not be resolved."""


class ImageDecodeError(ValueError):
    """An image payload could not be decoded in any supported raster format."""


@dataclass
class FormField:
    """One named form field (possibly spread over several widgets)."""

    name: str
    kind: str
    page_index: int
    rect: fitz.Rect
    options: list[str] = field(default_factory=list)
    widget_count: int = 1


@dataclass
class RasterImage:
    data: bytes
    width: int
    height: int
    format: str  # "png" | "jpeg"

    @property
    def aspect(self) -> float:
        return self.width / self.height if self.height else 1.0


# ---------------------------------------------------------------------------
# Image payload helpers
# ---------------------------------------------------------------------------

def is_image_payload(value: object) -> bool:
    """True for ``data:image/...`` strings (signature pads send these)."""
    return isinstance(value, str) and value.startswith(IMAGE_PAYLOAD_PREFIX)


def decode_image_payload(value: str) -> bytes:
    """Return the raw bytes of a ``data:image/<fmt>;base64,<data>`` string."""
    _, sep, encoded = value.partition(",")
    if not sep or not encoded:
        raise ImageDecodeError("Invalid image data format")
    try:
        return base64.b64decode(encoded, validate=False)
    except (binascii.Error, ValueError) as exc:
        raise ImageDecodeError(f"Invalid base64 image data: {exc}") from exc


def _decode_as(data: bytes, fmt: str, magic: bytes) -> RasterImage:
    if not data.startswith(magic):
        raise ImageDecodeError(f"Not a {fmt.upper()} image")
    try:
        pix = fitz.Pixmap(data)
    except Exception as exc:
        raise ImageDecodeError(f"{fmt.upper()} decode failed: {exc}") from exc
    if pix.width <= 0 or pix.height <= 0:
        raise ImageDecodeError(f"{fmt.upper()} image has no pixels")
    return RasterImage(data=data, width=pix.width, height=pix.height, format=fmt)


def decode_raster(data: bytes) -> RasterImage:
    """Decode as PNG, falling back to JPEG. Raises :class:`ImageDecodeError`."""
    try:
        return _decode_as(data, "png", _PNG_MAGIC)
    except ImageDecodeError as png_error:
        logger.debug("PNG decode failed (%s), trying JPEG", png_error)
    return _decode_as(data, "jpeg", _JPEG_MAGIC)


# ---------------------------------------------------------------------------
# Document wrapper
# ---------------------------------------------------------------------------

class PdfFormDocument:
    """A loaded fillable PDF. Not thread-safe; one instance per job."""

    def __init__(self, doc: fitz.Document):
        self._doc = doc
        # Keep page objects alive so widgets stay bound to a live parent.
        self._pages = [doc[i] for i in range(doc.page_count)]
        self._widgets: dict[str, list[fitz.Widget]] = {}
        for page in self._pages:
            for widget in page.widgets() or []:
                if widget.field_name:
                    self._widgets.setdefault(widget.field_name, []).append(widget)

    @classmethod
    def load(cls, data: bytes) -> "PdfFormDocument":
        try:
            doc = fitz.open(stream=data, filetype="pdf")
        except Exception as exc:
            raise ValueError(f"Unable to open PDF: {exc}") from exc
        if doc.is_encrypted:
            doc.close()
            raise ValueError("Password-protected PDFs are not supported")
        if doc.page_count == 0:
            doc.close()
            raise ValueError("PDF contains no pages")
        return cls(doc)

    def close(self) -> None:
        self._doc.close()

    def __enter__(self) -> "PdfFormDocument":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # -- enumeration --------------------------------------------------------

    @property
    def page_count(self) -> int:
        return len(self._pages)

    def page_size(self, page_index: int) -> tuple[float, float]:
        rect = self._pages[page_index].rect
        return rect.width, rect.height

    def fields(self) -> list[FormField]:
        result: list[FormField] = []
        for name, widgets in self._widgets.items():
            first = widgets[0]
            options: list[str] = []
            if first.field_type in (fitz.PDF_WIDGET_TYPE_COMBOBOX, fitz.PDF_WIDGET_TYPE_LISTBOX):
                options = [_option_value(o) for o in (first.choice_values or [])]
            elif first.field_type == fitz.PDF_WIDGET_TYPE_RADIOBUTTON:
                options = [str(w.on_state()) for w in widgets]
            result.append(
                FormField(
                    name=name,
                    kind=_WIDGET_KINDS.get(first.field_type, FieldKind.OTHER),
                    page_index=first.parent.number,
                    rect=fitz.Rect(first.rect),
                    options=options,
                    widget_count=len(widgets),
                )
            )
        return result

    def field_value(self, name: str):
        widgets = self._widgets.get(name)
        return widgets[0].field_value if widgets else None

    def field_geometry(self, name: str) -> list[tuple[int, fitz.Rect]]:
        """Return ``(page_index, rect)`` for every widget of *name*."""
        widgets = self._widgets.get(name)
        if not widgets:
            raise FieldLookupError(f"No widget found for field '{name}'")
        placements: list[tuple[int, fitz.Rect]] = []
        for widget in widgets:
            rect = fitz.Rect(widget.rect)
            if rect.is_infinite or not rect.is_valid:
                raise FieldLookupError(f"Field '{name}' has an unusable rectangle {rect}")
            placements.append((widget.parent.number, rect))
        return placements

    # -- writes -------------------------------------------------------------

    def _each(self, name: str):
        widgets = self._widgets.get(name)
        if not widgets:
            raise FieldLookupError(f"No widget found for field '{name}'")
        return widgets

    def set_text(self, name: str, text: str) -> None:
        for widget in self._each(name):
            widget.field_value = text
            widget.update()

    def set_checked(self, name: str, checked: bool) -> None:
        for widget in self._each(name):
            widget.field_value = bool(checked)
            widget.update()

    def select_option(self, name: str, value: str) -> bool:
        """Select *value* on a combo/list box or radio group. False if not offered."""
        widgets = self._each(name)
        first = widgets[0]
        if first.field_type == fitz.PDF_WIDGET_TYPE_RADIOBUTTON:
            matched = False
            for widget in widgets:
                on = str(widget.on_state())
                widget.field_value = on if on == value else "Off"
                matched = matched or on == value
                widget.update()
            return matched

        offered = [_option_value(o) for o in (first.choice_values or [])]
        if value not in offered:
            return False
        for widget in widgets:
            widget.field_value = value
            widget.update()
        return True

    def clear_and_lock(self, name: str) -> None:
        """Blank the field and mark it read-only."""
        for widget in self._each(name):
            if widget.field_type in (fitz.PDF_WIDGET_TYPE_CHECKBOX, fitz.PDF_WIDGET_TYPE_RADIOBUTTON):
                widget.field_value = False
            elif widget.field_type != fitz.PDF_WIDGET_TYPE_SIGNATURE:
                widget.field_value = ""
            widget.field_flags |= fitz.PDF_FIELD_IS_READ_ONLY
            widget.update()

    def draw_image(self, page_index: int, rect: fitz.Rect, image: RasterImage) -> None:
        self._pages[page_index].insert_image(
            rect, stream=image.data, keep_proportion=True, overlay=True,
        )

    # -- output -------------------------------------------------------------

    def flatten(self) -> None:
        """Bake widget appearances into page content and drop interactivity."""
        self._widgets.clear()
        self._doc.bake(annots=False, widgets=True)

    def to_bytes(self) -> bytes:
        return self._doc.tobytes(garbage=3, deflate=True)


def _option_value(option) -> str:
    # choice_values entries are either "value" or ("export", "display")
    if isinstance(option, (list, tuple)):
        return str(option[0])
    return str(option)
