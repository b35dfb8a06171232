"""Tests for field classification, filling and signature placement."""

from types import SimpleNamespace

import fitz
import pytest

from signflow.core.exceptions import DocumentGenerationError
from signflow.documents.codec import FieldLookupError, FormField, PdfFormDocument, RasterImage
from signflow.documents.fields import (
    FieldClassifier,
    FieldFiller,
    FieldRole,
    fallback_signature_rect,
    fill_and_flatten,
    fit_signature_rect,
    merge_form_data,
)

FALLBACK_TEXT = "*** DIGITALLY SIGNED ***"


def _field(name, kind="text"):
    return FormField(name=name, kind=kind, page_index=0, rect=fitz.Rect(0, 0, 10, 10))


def _recipient(order_index, form_data, status="completed"):
    return SimpleNamespace(order_index=order_index, form_data=form_data, status=status)


def _image_rects(document: PdfFormDocument, page_index: int) -> list[fitz.Rect]:
    page = document._pages[page_index]
    return [fitz.Rect(info["bbox"]) for info in page.get_image_info()]


# ---------------------------------------------------------------------------
# merge_form_data
# ---------------------------------------------------------------------------

class TestMergeFormData:
    def test_later_recipient_wins(self):
        merged = merge_form_data([
            _recipient(1, {"name": "second", "b": 2}),
            _recipient(0, {"name": "first", "a": 1}),
        ])
        assert merged == {"name": "second", "a": 1, "b": 2}

    def test_pending_and_empty_recipients_contribute_nothing(self):
        merged = merge_form_data([
            _recipient(0, {"a": 1}),
            _recipient(1, None),
            _recipient(2, {"a": "ignored"}, status="pending"),
        ])
        assert merged == {"a": 1}


# ---------------------------------------------------------------------------
# FieldClassifier
# ---------------------------------------------------------------------------

class TestFieldClassifier:
    @pytest.mark.parametrize(
        "field, role",
        [
            (_field("kbup"), FieldRole.RESERVED),
            (_field("KBUP"), FieldRole.RESERVED),
            (_field("kbup", kind="checkbox"), FieldRole.RESERVED),
            (_field("consent", kind="checkbox"), FieldRole.CHECKBOX),
            (_field("pharmacy", kind="choice"), FieldRole.CHOICE),
            (_field("gender", kind="radio"), FieldRole.CHOICE),
            (_field("Patient_Signature"), FieldRole.SIGNATURE),
            (_field("authorized_by"), FieldRole.SIGNATURE),
            (_field("sig", kind="signature"), FieldRole.SIGNATURE),
            (_field("patient_name"), FieldRole.TEXT),
            (_field("submit", kind="other"), FieldRole.IGNORED),
        ],
    )
    def test_classify(self, field, role):
        assert FieldClassifier().classify(field) == role

    def test_custom_policy(self):
        classifier = FieldClassifier(
            reserved_names=frozenset({"internal"}), signature_patterns=("initials",),
        )
        assert classifier.classify(_field("internal")) == FieldRole.RESERVED
        assert classifier.classify(_field("kbup")) == FieldRole.TEXT
        assert classifier.classify(_field("patient_initials")) == FieldRole.SIGNATURE
        assert classifier.classify(_field("patient_sign")) == FieldRole.TEXT


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------

class TestGeometry:
    def test_fit_is_bounded_by_minimum_height_and_centered(self):
        field_rect = fitz.Rect(100, 500, 300, 520)  # 200 x 20
        image = RasterImage(data=b"", width=300, height=100, format="png")

        rect = fit_signature_rect(field_rect, image, 150, 40)

        assert rect.width == pytest.approx(120)
        assert rect.height == pytest.approx(40)
        assert rect.x0 == pytest.approx(140)
        assert rect.y0 == pytest.approx(490)

    def test_fit_grows_tiny_fields_to_minimum_width(self):
        field_rect = fitz.Rect(0, 0, 50, 50)
        image = RasterImage(data=b"", width=400, height=100, format="png")

        rect = fit_signature_rect(field_rect, image, 150, 40)

        assert rect.width == pytest.approx(150)
        assert rect.height == pytest.approx(37.5)
        # centered on the field center
        assert (rect.x0 + rect.x1) / 2 == pytest.approx(25)
        assert (rect.y0 + rect.y1) / 2 == pytest.approx(25)

    def test_fallback_rect_bottom_right(self):
        image = RasterImage(data=b"", width=200, height=100, format="png")

        rect = fallback_signature_rect(612, 792, image)

        assert rect.width == pytest.approx(183.6)
        assert rect.height == pytest.approx(91.8)
        assert rect.x1 == pytest.approx(612 - 50)
        assert rect.y1 == pytest.approx(792 - 100)

    def test_fallback_width_capped_at_200(self):
        image = RasterImage(data=b"", width=100, height=100, format="png")
        rect = fallback_signature_rect(1200, 800, image)
        assert rect.width == pytest.approx(200)


# ---------------------------------------------------------------------------
# FieldFiller
# ---------------------------------------------------------------------------

class TestFieldFiller:
    def test_fills_text_checkbox_and_choice(self, form_pdf):
        with PdfFormDocument.load(form_pdf) as document:
            report = FieldFiller().fill(
                document,
                {"patient_name": "Jane Doe", "consent": "Yes", "pharmacy": "CVS", "unknown": "x"},
            )
            with PdfFormDocument.load(document.to_bytes()) as saved:
                assert saved.field_value("patient_name") == "Jane Doe"
                assert saved.field_value("consent") not in (False, "Off", None, "")
                assert saved.field_value("pharmacy") == "CVS"

        assert sorted(report.filled) == ["consent", "patient_name", "pharmacy"]

    @pytest.mark.parametrize("value", [True, "true", "TRUE", "yes", "Yes"])
    def test_checkbox_truthy_values(self, form_pdf, value):
        with PdfFormDocument.load(form_pdf) as document:
            FieldFiller().fill(document, {"consent": value})
            with PdfFormDocument.load(document.to_bytes()) as saved:
                assert saved.field_value("consent") not in (False, "Off", None, "")

    @pytest.mark.parametrize("value", [False, "no", "1", "on", ""])
    def test_checkbox_other_values_uncheck(self, form_pdf, value):
        with PdfFormDocument.load(form_pdf) as document:
            FieldFiller().fill(document, {"consent": value})
            with PdfFormDocument.load(document.to_bytes()) as saved:
                assert saved.field_value("consent") in (False, "Off", None, "")

    def test_choice_not_offered_is_left_untouched(self, form_pdf):
        with PdfFormDocument.load(form_pdf) as document:
            report = FieldFiller().fill(document, {"pharmacy": "Costco"})
        assert report.skipped == ["pharmacy"]
        assert report.filled == []

    def test_reserved_field_suppressed_even_with_data(self, form_pdf):
        with PdfFormDocument.load(form_pdf) as document:
            report = FieldFiller().fill(document, {"kbup": "leaked value"})
            with PdfFormDocument.load(document.to_bytes()) as saved:
                assert saved.field_value("kbup") in ("", None)
                assert saved._widgets["kbup"][0].field_flags & fitz.PDF_FIELD_IS_READ_ONLY

        assert report.hidden == ["kbup"]
        assert "kbup" not in report.filled

    def test_signature_drawn_in_field_and_text_cleared(self, form_pdf, signature_payload):
        with PdfFormDocument.load(form_pdf) as document:
            report = FieldFiller().fill(document, {"prescriber_signature": signature_payload})
            rects = _image_rects(document, 0)
            assert document.field_value("prescriber_signature") == ""

        assert report.signatures == {"prescriber_signature": "field"}
        assert len(rects) == 1
        # 120x40 image into a 200x40 field: height-bound, centered horizontally
        assert rects[0].height == pytest.approx(40, abs=0.5)
        assert rects[0].width == pytest.approx(120, abs=0.5)
        assert (rects[0].x0 + rects[0].x1) / 2 == pytest.approx(172, abs=0.5)

    def test_signature_falls_back_to_last_page(
        self, make_form_pdf, signature_payload, monkeypatch,
    ):
        def _no_geometry(self, name):
            raise FieldLookupError("no rect")

        monkeypatch.setattr(PdfFormDocument, "field_geometry", _no_geometry)

        with PdfFormDocument.load(make_form_pdf(pages=2)) as document:
            report = FieldFiller().fill(document, {"prescriber_signature": signature_payload})
            first_page = _image_rects(document, 0)
            last_page = _image_rects(document, 1)

        assert report.signatures == {"prescriber_signature": "last_page"}
        assert first_page == []
        assert len(last_page) == 1
        rect = last_page[0]
        assert rect.width == pytest.approx(min(200, 612 * 0.3), abs=0.5)
        assert rect.x1 == pytest.approx(612 - 50, abs=0.5)
        assert rect.y1 == pytest.approx(792 - 100, abs=0.5)

    def test_partial_widget_failure_keeps_field_placement(
        self, make_form_pdf, signature_payload, monkeypatch,
    ):
        def _two_widgets(self, name):
            return [(0, fitz.Rect(72, 600, 272, 640)), (0, fitz.Rect(300, 600, 500, 640))]

        real_draw = PdfFormDocument.draw_image
        calls = []

        def _fail_second(self, page_index, rect, image):
            calls.append(page_index)
            if len(calls) == 2:
                raise RuntimeError("stream rejected")
            real_draw(self, page_index, rect, image)

        monkeypatch.setattr(PdfFormDocument, "field_geometry", _two_widgets)
        monkeypatch.setattr(PdfFormDocument, "draw_image", _fail_second)

        with PdfFormDocument.load(make_form_pdf(pages=2)) as document:
            report = FieldFiller().fill(document, {"prescriber_signature": signature_payload})
            first_page = _image_rects(document, 0)
            last_page = _image_rects(document, 1)

        assert report.signatures == {"prescriber_signature": "field"}
        assert calls == [0, 0]
        assert len(first_page) == 1
        assert last_page == []

    def test_undecodable_signature_writes_marker(self, form_pdf, broken_image_payload):
        with PdfFormDocument.load(form_pdf) as document:
            report = FieldFiller().fill(document, {"prescriber_signature": broken_image_payload})
            assert _image_rects(document, 0) == []
            assert document.field_value("prescriber_signature") == FALLBACK_TEXT

        assert report.signatures == {"prescriber_signature": "text_marker"}

    def test_image_in_plain_text_field_is_skipped(self, form_pdf, signature_payload):
        with PdfFormDocument.load(form_pdf) as document:
            report = FieldFiller().fill(document, {"notes": signature_payload})
            assert _image_rects(document, 0) == []
            assert document.field_value("notes") == ""

        assert report.skipped == ["notes"]

    def test_plain_text_into_signature_named_field(self, form_pdf):
        with PdfFormDocument.load(form_pdf) as document:
            FieldFiller().fill(document, {"prescriber_signature": "Dr. Who"})
            assert document.field_value("prescriber_signature") == "Dr. Who"


# ---------------------------------------------------------------------------
# fill_and_flatten
# ---------------------------------------------------------------------------

class TestFillAndFlatten:
    def test_produces_static_document(self, form_pdf, signature_payload):
        output, report = fill_and_flatten(
            form_pdf,
            {"patient_name": "Jane Doe", "prescriber_signature": signature_payload, "kbup": "x"},
            FieldFiller(),
        )

        with fitz.open(stream=output, filetype="pdf") as doc:
            page = doc[0]
            assert list(page.widgets()) == []
            text = page.get_text()
            assert "Jane Doe" in text
            assert "internal-code" not in text
            assert len(page.get_images()) == 1
        assert report.hidden == ["kbup"]

    def test_unreadable_source_raises(self):
        with pytest.raises(DocumentGenerationError):
            fill_and_flatten(b"%PDF-garbage", {}, FieldFiller())
