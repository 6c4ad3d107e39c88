from __future__ import annotations

import pytest

from chatflow_widget.validation import (
    MAX_FILE_SIZE,
    sanitize_filename,
    sanitize_input,
    sanitize_metadata,
    validate_file_upload,
)


def test_sanitize_input_strips_and_truncates():
    assert sanitize_input("  <script>hi</script> ") == "scripthi/script"
    assert len(sanitize_input("a" * 6000)) == 5000


def test_sanitize_metadata_keeps_scalars_and_lists():
    meta = sanitize_metadata({
        "page": "checkout",
        "count": 3,
        "vip": True,
        "tags": list(range(80)),
        "nested": {"a": 1},
        "k" * 101: "too long a key",
        "long": "x" * 2000,
    })
    assert meta["page"] == "checkout"
    assert meta["count"] == 3
    assert meta["vip"] is True
    assert len(meta["tags"]) == 50
    assert len(meta["long"]) == 1000
    assert "nested" not in meta
    assert "k" * 101 not in meta
    assert sanitize_metadata("nope") == {}


def test_sanitize_filename():
    assert sanitize_filename("my report (final).pdf") == "my_report__final_.pdf"


@pytest.mark.parametrize("mimetype", ["image/png", "application/pdf", "text/plain"])
def test_allowed_types(mimetype):
    assert validate_file_upload("file", mimetype, 10).valid


def test_rejections():
    assert validate_file_upload(None, "text/plain", 1).error == "No file provided"
    assert "not allowed" in validate_file_upload("a.exe", "application/x-msdownload", 1).error
    assert validate_file_upload("big.pdf", "application/pdf", MAX_FILE_SIZE + 1).error == (
        "File size exceeds maximum allowed size of 10MB"
    )
    assert validate_file_upload("", "text/plain", 1).error == "Invalid filename"
