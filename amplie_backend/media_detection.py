from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

MEDIA_KINDS = ("image", "audio", "video", "document")


@dataclass(frozen=True)
class DetectedMedia:
    kind: str
    mime_type: str
    extension: str


_EXT_TO_MIME = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "mp4": "video/mp4",
    "3gp": "video/3gpp",
    "mov": "video/quicktime",
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "ogg": "audio/ogg",
    "opus": "audio/opus",
    "m4a": "audio/mp4",
    "pdf": "application/pdf",
    "txt": "text/plain",
    "csv": "text/csv",
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "xls": "application/vnd.ms-excel",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "ppt": "application/vnd.ms-powerpoint",
    "pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "zip": "application/zip",
}

_MIME_TO_EXT = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "video/mp4": "mp4",
    "video/3gpp": "3gp",
    "video/quicktime": "mov",
    "audio/mpeg": "mp3",
    "audio/wav": "wav",
    "audio/ogg": "ogg",
    "audio/opus": "opus",
    "audio/mp4": "m4a",
    "application/pdf": "pdf",
    "text/plain": "txt",
    "text/csv": "csv",
    "application/zip": "zip",
}


def _safe_lower(s: Optional[str]) -> str:
    return (s or "").strip().lower()


def file_extension(filename: Optional[str]) -> str:
    name = _safe_lower(filename)
    dot = name.rfind(".")
    if dot < 0 or dot == len(name) - 1:
        return ""
    return name[dot + 1:]


def _sniff_mime_from_bytes(head: bytes) -> str:
    if not head:
        return ""

    if head.startswith(b"\xFF\xD8\xFF"):
        return "image/jpeg"
    if head.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if head.startswith(b"GIF87a") or head.startswith(b"GIF89a"):
        return "image/gif"
    if head.startswith(b"%PDF"):
        return "application/pdf"
    if head.startswith(b"ID3"):
        return "audio/mpeg"
    if len(head) >= 12 and head[0:4] == b"RIFF" and head[8:12] == b"WAVE":
        return "audio/wav"
    if len(head) >= 12 and head[0:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "image/webp"
    if head.startswith(b"OggS"):
        return "audio/ogg"
    if len(head) >= 12 and head[4:8] == b"ftyp":
        return "video/mp4"
    if head.startswith(b"PK\x03\x04"):
        return "application/zip"

    return ""


def kind_from_mime(mime_type: str) -> str:
    mt = _safe_lower(mime_type).split(";")[0].strip()
    if mt.startswith("image/"):
        return "image"
    if mt.startswith("audio/") or mt.endswith("+opus"):
        return "audio"
    if mt.startswith("video/"):
        return "video"
    return "document"


def detect_media_kind(
    *,
    declared_mime_type: Optional[str] = None,
    filename: Optional[str] = None,
    head_bytes: Optional[bytes] = None,
    hinted_kind: Optional[str] = None,
) -> DetectedMedia:
    """Work out (kind, mime type, extension) for an attachment before upload.

    Precedence for the MIME type: magic bytes, declared type, file extension.
    A valid ``hinted_kind`` (the message variant) always wins for the kind.
    """
    ext = file_extension(filename)
    mime = (
        _sniff_mime_from_bytes(head_bytes or b"")
        or _safe_lower(declared_mime_type).split(";")[0].strip()
        or _EXT_TO_MIME.get(ext, "")
        or "application/octet-stream"
    )

    hinted = _safe_lower(hinted_kind)
    kind = hinted if hinted in MEDIA_KINDS else kind_from_mime(mime)

    if not ext:
        ext = _MIME_TO_EXT.get(mime, "bin")
    return DetectedMedia(kind=kind, mime_type=mime, extension=ext)
