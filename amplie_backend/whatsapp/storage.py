from __future__ import annotations

import logging
import random
import string
import time
from dataclasses import dataclass
from typing import Any, Optional

from ..media_detection import detect_media_kind
from .errors import AttachmentUploadError
from .messages import Attachment

logger = logging.getLogger(__name__)

MAX_ATTACHMENT_BYTES = 10 * 1024 * 1024


@dataclass(frozen=True)
class StoredAttachment:
    url: str
    path: str
    kind: str
    mime_type: str
    size: int


class AttachmentStore:
    """Uploads outbound attachments to Supabase storage and returns public URLs."""

    def __init__(self, client: Any, *, bucket: str = "attachments", prefix: str = "whatsapp-attachments"):
        self._client = client
        self._bucket = bucket
        self._prefix = prefix.strip("/")

    def build_path(self, extension: str) -> str:
        suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=8))
        return f"{self._prefix}/{int(time.time() * 1000)}-{suffix}.{extension or 'bin'}"

    def upload(self, attachment: Attachment, *, hinted_kind: Optional[str] = None) -> StoredAttachment:
        content = attachment.content or b""
        if not content:
            raise AttachmentUploadError("Arquivo vazio.", details={"filename": attachment.filename})
        if len(content) > MAX_ATTACHMENT_BYTES:
            raise AttachmentUploadError(
                "Arquivo muito grande. Máximo: 10MB",
                details={"filename": attachment.filename, "size": len(content)},
            )

        detected = detect_media_kind(
            declared_mime_type=attachment.content_type,
            filename=attachment.filename,
            head_bytes=content[:96],
            hinted_kind=hinted_kind,
        )
        path = self.build_path(detected.extension)

        try:
            bucket = self._client.storage.from_(self._bucket)
            bucket.upload(path, content, file_options={"content-type": detected.mime_type})
            public_url = bucket.get_public_url(path)
        except Exception as e:
            logger.warning(f"Supabase storage error: {e}")
            raise AttachmentUploadError(details={"bucket": self._bucket, "path": path, "error": str(e)})

        if isinstance(public_url, str):
            public_url = public_url.rstrip("?")
        if not public_url:
            raise AttachmentUploadError(details={"bucket": self._bucket, "path": path, "error": "empty public url"})

        return StoredAttachment(
            url=str(public_url),
            path=path,
            kind=detected.kind,
            mime_type=detected.mime_type,
            size=len(content),
        )
