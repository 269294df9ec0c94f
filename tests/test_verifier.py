import hashlib
from unittest.mock import MagicMock

from chunked_upload.services.verifier import (
    EMPTY_FILE,
    EXECUTABLE_FILE,
    FILE_HAS_SCRIPT,
    HASH_MISMATCH,
    SIZE_MISMATCH,
    FailureReason,
    IntegrityVerifier,
)


def _pe_header():
    head = bytearray(b"MZ" + b"\x00" * 62)
    head[60:64] = (64).to_bytes(4, "little")
    return bytes(head) + b"PE\x00\x00" + b"\x00" * 64


def test_plain_bytes_pass_partial_check():
    verifier = IntegrityVerifier()

    assert verifier.check_partial(b"a" * 200) is None
    assert verifier.check_partial(b"just some text, nothing to see") is None


def test_pe_executable_is_rejected():
    reason = IntegrityVerifier().check_partial(_pe_header())

    assert reason.code == EXECUTABLE_FILE


def test_mz_without_pe_header_is_accepted():
    assert IntegrityVerifier().check_partial(b"MZ" + b"\x01" * 100) is None


def test_elf_and_shebang_are_rejected():
    verifier = IntegrityVerifier()

    assert verifier.check_partial(b"\x7fELF\x02\x01\x01").code == EXECUTABLE_FILE
    assert verifier.check_partial(b"#!/bin/sh\nrm -rf /\n").code == EXECUTABLE_FILE


def test_html_is_rejected_regardless_of_case_and_whitespace():
    verifier = IntegrityVerifier()

    assert verifier.check_partial(b"   <HTML><body>hi</body>").code == FILE_HAS_SCRIPT
    assert verifier.check_partial(b"<!DOCTYPE   html>").code == FILE_HAS_SCRIPT
    assert verifier.check_partial(b"\n\n<  script>alert(1)</script>").code is not None


def test_utf16_html_is_rejected():
    assert IntegrityVerifier().check_partial("<html>".encode("utf-16-le")).code == FILE_HAS_SCRIPT


def test_script_urls_and_event_handlers_are_rejected():
    verifier = IntegrityVerifier()

    assert verifier.check_partial(b'<a href="javascript:alert(1)">x</a>').code == FILE_HAS_SCRIPT
    assert verifier.check_partial(b'<div onload="steal()">').code == FILE_HAS_SCRIPT


def test_markup_after_sniff_window_is_ignored():
    assert IntegrityVerifier().check_partial(b"a" * 2048 + b"<script>") is None


def test_full_check_accepts_matching_file(tmp_path):
    path = tmp_path / "file"
    path.write_bytes(b"a" * 150)
    digest = hashlib.sha256(b"a" * 150).hexdigest()

    assert IntegrityVerifier().check_full(str(path), expected_size=150, expected_sha256=digest.upper()) is None


def test_full_check_rejects_empty_file(tmp_path):
    path = tmp_path / "file"
    path.write_bytes(b"")

    assert IntegrityVerifier().check_full(str(path)).code == EMPTY_FILE


def test_full_check_rejects_size_mismatch(tmp_path):
    path = tmp_path / "file"
    path.write_bytes(b"a" * 10)

    assert IntegrityVerifier().check_full(str(path), expected_size=11).code == SIZE_MISMATCH


def test_full_check_rejects_hash_mismatch(tmp_path):
    path = tmp_path / "file"
    path.write_bytes(b"a" * 10)

    assert IntegrityVerifier().check_full(str(path), expected_sha256="0" * 64).code == HASH_MISMATCH


def test_full_check_sniffs_file_head(tmp_path):
    path = tmp_path / "file"
    path.write_bytes(b"<html><script>x</script></html>")

    assert IntegrityVerifier().check_full(str(path)).code == FILE_HAS_SCRIPT


def test_full_check_runs_extra_checks_last(tmp_path):
    path = tmp_path / "file"
    path.write_bytes(b"a" * 10)
    extra = MagicMock()
    extra.check_full.return_value = FailureReason("filetype-banned", ".exe")

    reason = IntegrityVerifier(extra_checks=[extra]).check_full(str(path), expected_size=10, file_name="x.exe")

    assert reason == FailureReason("filetype-banned", ".exe")
    extra.check_full.assert_called_once_with(str(path), 10, None, "x.exe")
