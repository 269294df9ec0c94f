"""
Content checks for chunked uploads.

Partial checks run on single chunks that may start anywhere inside the file,
so they can only sniff signatures on the bytes at hand. They are early
rejection only; the full check on the assembled file is authoritative.
"""
import hashlib
import logging
import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence

logger = logging.getLogger(__name__)

SNIFF_BYTES = 1024
HASH_BLOCK_SIZE = 65536

EXECUTABLE_SIGNATURES = (
    (b"\x7fELF", "ELF executable"),
    (b"\xfe\xed\xfa\xce", "Mach-O executable"),
    (b"\xfe\xed\xfa\xcf", "Mach-O executable"),
    (b"\xce\xfa\xed\xfe", "Mach-O executable"),
    (b"\xcf\xfa\xed\xfe", "Mach-O executable"),
    (b"\xca\xfe\xba\xbe", "Java class or universal binary"),
    (b"#!/", "interpreter script"),
)

SCRIPT_TAGS = (
    b"<!doctypehtml",
    b"<a href",
    b"<body",
    b"<head",
    b"<html",
    b"<iframe",
    b"<img",
    b"<pre",
    b"<script",
    b"<table",
    b"<title",
    b"<?php",
)

SCRIPT_PATTERNS = (
    re.compile(rb"<[^>]*(java|vb)\s*script\s*:"),
    re.compile(rb"(src|href|style)\s*=\s*['\"]?\s*(java|vb)script:"),
    re.compile(rb"<[a-z][^>]*\son[a-z]+\s*="),
)

EMPTY_FILE = "empty-file"
SIZE_MISMATCH = "size-mismatch"
HASH_MISMATCH = "hash-mismatch"
EXECUTABLE_FILE = "executable-file"
FILE_HAS_SCRIPT = "file-has-script"
# the assembled file could not be checked at all
VERIFICATION_ERROR = "verification-error"


@dataclass(frozen=True)
class FailureReason:
    code: str
    detail: str = ""

    def __str__(self):
        return f"{self.code}: {self.detail}" if self.detail else self.code


class PartialVerifiable(ABC):
    @abstractmethod
    def check_partial(self, data: bytes) -> Optional[FailureReason]:
        """Best-effort check of a byte range; ``None`` means accepted."""


class FullVerifiable(ABC):
    @abstractmethod
    def check_full(
        self,
        path: str,
        expected_size: Optional[int] = None,
        expected_sha256: Optional[str] = None,
        file_name: Optional[str] = None,
    ) -> Optional[FailureReason]:
        """Authoritative check of an assembled file; ``None`` means accepted."""


def _looks_like_pe(head: bytes) -> bool:
    if not head.startswith(b"MZ") or len(head) < 64:
        return False
    pe_offset = int.from_bytes(head[60:64], "little")
    return head[pe_offset:pe_offset + 4] == b"PE\x00\x00"


def detect_executable(head: bytes) -> Optional[FailureReason]:
    if _looks_like_pe(head):
        return FailureReason(EXECUTABLE_FILE, "Windows PE executable")
    for signature, description in EXECUTABLE_SIGNATURES:
        if head.startswith(signature):
            return FailureReason(EXECUTABLE_FILE, description)
    return None


def detect_script(head: bytes) -> Optional[FailureReason]:
    """Look for HTML or script markup that a browser might execute."""
    # NUL bytes are dropped so UTF-16 text matches too
    chunk = head[:SNIFF_BYTES].lower().replace(b"\x00", b"")
    compact = re.sub(rb"\s+", b"", chunk)
    spaced = re.sub(rb"\s+", b" ", chunk)
    for tag in SCRIPT_TAGS:
        if tag in spaced or tag.replace(b" ", b"") in compact:
            return FailureReason(FILE_HAS_SCRIPT, tag.decode("ascii"))
    for pattern in SCRIPT_PATTERNS:
        if pattern.search(spaced):
            return FailureReason(FILE_HAS_SCRIPT, pattern.pattern.decode("ascii"))
    return None


def file_sha256(path: str) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        while True:
            block = f.read(HASH_BLOCK_SIZE)
            if not block:
                break
            digest.update(block)
    return digest.hexdigest()


class IntegrityVerifier(PartialVerifiable, FullVerifiable):
    """Signature sniffing on chunks and full verification of assembled files.

    ``extra_checks`` run last on the assembled file; they hold the business
    rules (file name policy, antivirus, ...) that live outside this service.
    """

    def __init__(self, extra_checks: Sequence[FullVerifiable] = ()):
        self.extra_checks = list(extra_checks)

    def check_partial(self, data: bytes) -> Optional[FailureReason]:
        head = bytes(data[:SNIFF_BYTES])
        return detect_executable(head) or detect_script(head)

    def check_full(
        self,
        path: str,
        expected_size: Optional[int] = None,
        expected_sha256: Optional[str] = None,
        file_name: Optional[str] = None,
    ) -> Optional[FailureReason]:
        size = os.path.getsize(path)
        if size == 0:
            return FailureReason(EMPTY_FILE)
        if expected_size is not None and size != expected_size:
            return FailureReason(SIZE_MISMATCH, f"expected {expected_size} bytes, found {size}")

        with open(path, "rb") as f:
            head = f.read(SNIFF_BYTES)
        reason = detect_executable(head) or detect_script(head)
        if reason:
            return reason

        if expected_sha256:
            actual = file_sha256(path)
            if actual.lower() != expected_sha256.lower():
                logger.error(f"File hash mismatch for {path}: expected {expected_sha256}, got {actual}")
                return FailureReason(HASH_MISMATCH, f"expected {expected_sha256}, got {actual}")

        for check in self.extra_checks:
            reason = check.check_full(path, expected_size, expected_sha256, file_name)
            if reason:
                return reason
        return None
