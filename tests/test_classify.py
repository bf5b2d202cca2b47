"""Tests for blobview.classify module."""

import pytest

from blobview.classify import (
    Classification,
    classify_by_bytes,
    classify_by_type,
    detect_type,
    is_candidate_reference,
)


class TestClassifyByType:
    """Tests for classify_by_type function."""

    @pytest.mark.parametrize(
        "label",
        ["application/pdf", "application/x-pdf", "application/acrobat"],
    )
    def test_pdf_family(self, label):
        assert classify_by_type(label) is Classification.PDF

    def test_case_insensitive(self):
        assert classify_by_type("Application/PDF") is Classification.PDF

    def test_parameters_ignored(self):
        """Test a PDF label with parameters is still a PDF."""
        assert classify_by_type("application/pdf; name=x.pdf") is Classification.PDF

    @pytest.mark.parametrize("label", ["", None, "application/octet-stream"])
    def test_generic_is_unknown(self, label):
        assert classify_by_type(label) is Classification.UNKNOWN

    def test_generic_with_parameters_is_unknown(self):
        label = "application/octet-stream; charset=binary"
        assert classify_by_type(label) is Classification.UNKNOWN

    @pytest.mark.parametrize("label", ["text/plain", "image/png", "text/html"])
    def test_other_is_not_pdf(self, label):
        assert classify_by_type(label) is Classification.NOT_PDF


class TestClassifyByBytes:
    """Tests for classify_by_bytes function."""

    def test_signature(self):
        assert classify_by_bytes(b"%PDF-1.7\n...") is Classification.PDF

    def test_exact_signature(self):
        assert classify_by_bytes(b"%PDF-") is Classification.PDF

    def test_too_short(self):
        assert classify_by_bytes(b"%PDF") is Classification.NOT_PDF

    def test_empty(self):
        assert classify_by_bytes(b"") is Classification.NOT_PDF

    def test_other_bytes(self):
        assert classify_by_bytes(b"\x89PNG\r\n") is Classification.NOT_PDF

    def test_bytearray(self):
        assert classify_by_bytes(bytearray(b"%PDF-1.4")) is Classification.PDF

    def test_never_raises(self):
        """Test unreadable input is classified, not raised."""
        assert classify_by_bytes(None) is Classification.NOT_PDF
        assert classify_by_bytes(12345) is Classification.NOT_PDF


class TestIsCandidateReference:
    """Tests for is_candidate_reference function."""

    def test_blob_reference(self):
        assert is_candidate_reference("blob:https://example.test/abc")

    def test_case_insensitive(self):
        assert is_candidate_reference("BLOB:https://example.test/abc")

    @pytest.mark.parametrize(
        "url",
        ["https://example.test/a.pdf", "data:application/pdf;base64,AA", "", None],
    )
    def test_not_candidate(self, url):
        assert not is_candidate_reference(url)


class TestDetectType:
    """Tests for detect_type function."""

    def test_pdf_extension(self, tmp_path):
        assert detect_type(tmp_path / "report.pdf") == "application/pdf"

    def test_unknown_extension(self, tmp_path):
        assert detect_type(tmp_path / "blob.xyzunknown") == "application/octet-stream"
