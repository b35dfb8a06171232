"""Tests for the PyMuPDF form codec and image payload decoding."""

import base64

import fitz
import pytest

from signflow.documents.codec import (
    FieldKind,
    FieldLookupError,
    ImageDecodeError,
    PdfFormDocument,
    decode_image_payload,
    decode_raster,
    is_image_payload,
)


def _reload(document: PdfFormDocument) -> PdfFormDocument:
    return PdfFormDocument.load(document.to_bytes())


class TestLoad:
    def test_rejects_non_pdf_bytes(self):
        with pytest.raises(ValueError):
            PdfFormDocument.load(b"definitely not a pdf")

    def test_enumerates_fields_with_kinds(self, form_pdf):
        with PdfFormDocument.load(form_pdf) as document:
            kinds = {f.name: f.kind for f in document.fields()}

        assert kinds == {
            "patient_name": FieldKind.TEXT,
            "notes": FieldKind.TEXT,
            "consent": FieldKind.CHECKBOX,
            "pharmacy": FieldKind.CHOICE,
            "prescriber_signature": FieldKind.TEXT,
            "kbup": FieldKind.TEXT,
        }

    def test_choice_options_listed(self, form_pdf):
        with PdfFormDocument.load(form_pdf) as document:
            pharmacy = next(f for f in document.fields() if f.name == "pharmacy")
        assert pharmacy.options == ["CVS", "Walgreens", "Rite Aid"]

    def test_page_geometry(self, make_form_pdf):
        with PdfFormDocument.load(make_form_pdf(pages=2)) as document:
            assert document.page_count == 2
            assert document.page_size(1) == (612, 792)


class TestWrites:
    def test_set_text_survives_save(self, form_pdf):
        with PdfFormDocument.load(form_pdf) as document:
            document.set_text("patient_name", "Jane Doe")
            with _reload(document) as reloaded:
                assert reloaded.field_value("patient_name") == "Jane Doe"

    def test_select_option_only_accepts_offered_values(self, form_pdf):
        with PdfFormDocument.load(form_pdf) as document:
            assert document.select_option("pharmacy", "Walgreens") is True
            assert document.select_option("pharmacy", "Costco") is False
            with _reload(document) as reloaded:
                assert reloaded.field_value("pharmacy") == "Walgreens"

    def test_clear_and_lock(self, form_pdf):
        with PdfFormDocument.load(form_pdf) as document:
            document.clear_and_lock("kbup")
            with _reload(document) as reloaded:
                assert reloaded.field_value("kbup") in ("", None)
                widget = reloaded._widgets["kbup"][0]
                assert widget.field_flags & fitz.PDF_FIELD_IS_READ_ONLY

    def test_unknown_field_raises_lookup_error(self, form_pdf):
        with PdfFormDocument.load(form_pdf) as document:
            with pytest.raises(FieldLookupError):
                document.set_text("does_not_exist", "x")
            with pytest.raises(FieldLookupError):
                document.field_geometry("does_not_exist")

    def test_field_geometry_reports_page_and_rect(self, form_pdf):
        with PdfFormDocument.load(form_pdf) as document:
            [(page_index, rect)] = document.field_geometry("prescriber_signature")
        assert page_index == 0
        assert rect == fitz.Rect(72, 600, 272, 640)

    def test_flatten_removes_widgets_and_keeps_text(self, form_pdf):
        with PdfFormDocument.load(form_pdf) as document:
            document.set_text("patient_name", "Jane Doe")
            document.flatten()
            data = document.to_bytes()

        with fitz.open(stream=data, filetype="pdf") as doc:
            page = doc[0]
            assert list(page.widgets()) == []
            assert "Jane Doe" in page.get_text()


class TestImagePayloads:
    def test_is_image_payload(self, signature_payload):
        assert is_image_payload(signature_payload)
        assert not is_image_payload("plain text")
        assert not is_image_payload(True)

    def test_decode_png(self, signature_payload):
        image = decode_raster(decode_image_payload(signature_payload))
        assert image.format == "png"
        assert (image.width, image.height) == (120, 40)
        assert image.aspect == pytest.approx(3.0)

    def test_decode_falls_back_to_jpeg(self):
        pix = fitz.Pixmap(fitz.csRGB, fitz.IRect(0, 0, 50, 25), False)
        pix.set_rect(pix.irect, (0, 0, 0))
        payload = "data:image/jpeg;base64," + base64.b64encode(pix.tobytes("jpeg")).decode()

        image = decode_raster(decode_image_payload(payload))
        assert image.format == "jpeg"
        assert (image.width, image.height) == (50, 25)

    def test_garbage_bytes_raise(self, broken_image_payload):
        with pytest.raises(ImageDecodeError):
            decode_raster(decode_image_payload(broken_image_payload))

    def test_payload_without_data_raises(self):
        with pytest.raises(ImageDecodeError):
            decode_image_payload("data:image/png;base64")
