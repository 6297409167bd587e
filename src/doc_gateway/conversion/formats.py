"""Accepted input formats and the content checks applied to uploads."""

import os

OLE2_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"  # legacy .doc/.xls/.ppt compound file
ZIP_MAGIC = b"PK\x03\x04"  # OOXML and OpenDocument containers
RTF_MAGIC = b"{\\rtf"

INPUT_SIGNATURES: dict[str, bytes] = {
    ".doc": OLE2_MAGIC,
    ".xls": OLE2_MAGIC,
    ".ppt": OLE2_MAGIC,
    ".docx": ZIP_MAGIC,
    ".xlsx": ZIP_MAGIC,
    ".pptx": ZIP_MAGIC,
    ".odt": ZIP_MAGIC,
    ".ods": ZIP_MAGIC,
    ".odp": ZIP_MAGIC,
    ".rtf": RTF_MAGIC,
}

MIME_TO_EXTENSION: dict[str, str] = {
    "application/msword": ".doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ".docx",
    "application/vnd.oasis.opendocument.text": ".odt",
    "application/rtf": ".rtf",
    "text/rtf": ".rtf",
    "application/vnd.ms-excel": ".xls",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": ".xlsx",
    "application/vnd.oasis.opendocument.spreadsheet": ".ods",
    "application/vnd.ms-powerpoint": ".ppt",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": ".pptx",
    "application/vnd.oasis.opendocument.presentation": ".odp",
}

SIGNATURE_BYTES = max(len(sig) for sig in INPUT_SIGNATURES.values())


def resolve_extension(filename: str, content_type: str | None, allowed_mime: frozenset[str]) -> str | None:
    """Pick the extension the stored upload gets, or None if the upload is not accepted.

    Only formats whose MIME type is in `allowed_mime` are accepted. A known
    file extension wins; otherwise an allow-listed content type is mapped to
    its canonical extension, since LibreOffice infers the input format from
    the file name.
    """
    allowed_exts = {MIME_TO_EXTENSION[m] for m in allowed_mime if m in MIME_TO_EXTENSION}
    _, ext = os.path.splitext(filename.lower())
    if ext in INPUT_SIGNATURES and ext in allowed_exts:
        return ext
    ct = (content_type or "").split(";", 1)[0].strip().lower()
    if ct and ct in allowed_mime:
        return MIME_TO_EXTENSION.get(ct)
    return None


def matches_signature(extension: str, head: bytes) -> bool:
    signature = INPUT_SIGNATURES.get(extension)
    return signature is not None and head.startswith(signature)
