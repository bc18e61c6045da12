import pytest

from amplie_backend.media_detection import detect_media_kind, file_extension, kind_from_mime
from amplie_backend.whatsapp.errors import AttachmentUploadError
from amplie_backend.whatsapp.messages import Attachment
from amplie_backend.whatsapp.storage import MAX_ATTACHMENT_BYTES, AttachmentStore


class _Bucket:
    def __init__(self):
        self.uploads = []

    def upload(self, path, content, file_options=None):
        self.uploads.append((path, file_options))

    def get_public_url(self, path):
        return f"https://storage.test/public/{path}?"


class _StorageClient:
    def __init__(self):
        self.bucket = _Bucket()

        class _Storage:
            def from_(_self, name):
                return self.bucket

        self.storage = _Storage()


def test_magic_bytes_win_over_declared_type():
    detected = detect_media_kind(
        declared_mime_type="application/octet-stream",
        filename="upload",
        head_bytes=b"\xFF\xD8\xFF\xE0" + b"\x00" * 16,
    )
    assert detected.kind == "image"
    assert detected.mime_type == "image/jpeg"
    assert detected.extension == "jpg"


def test_hinted_kind_overrides_mime_kind():
    detected = detect_media_kind(filename="nota.ogg", head_bytes=b"OggS\x00\x02", hinted_kind="document")
    assert detected.kind == "document"
    assert detected.mime_type == "audio/ogg"
    assert detected.extension == "ogg"


def test_unknown_content_falls_back_to_document():
    detected = detect_media_kind(filename="dados")
    assert detected.kind == "document"
    assert detected.mime_type == "application/octet-stream"
    assert detected.extension == "bin"


def test_small_helpers():
    assert file_extension("Relatorio.Final.PDF") == "pdf"
    assert file_extension("sem-extensao.") == ""
    assert kind_from_mime("audio/ogg; codecs=opus") == "audio"
    assert kind_from_mime("video/mp4") == "video"
    assert kind_from_mime("application/pdf") == "document"


def test_store_upload_returns_public_url():
    client = _StorageClient()
    stored = AttachmentStore(client, prefix="/anexos/").upload(Attachment(content=b"%PDF-1.7 ...", filename="contrato.pdf"))

    path, options = client.bucket.uploads[0]
    assert path.startswith("anexos/")
    assert path.endswith(".pdf")
    assert options == {"content-type": "application/pdf"}
    assert stored.url == f"https://storage.test/public/{path}"
    assert stored.kind == "document"
    assert stored.size == len(b"%PDF-1.7 ...")


@pytest.mark.parametrize("content", [b"", b"x" * (MAX_ATTACHMENT_BYTES + 1)])
def test_store_rejects_empty_and_oversized(content):
    client = _StorageClient()
    with pytest.raises(AttachmentUploadError):
        AttachmentStore(client).upload(Attachment(content=content, filename="a.bin"))
    assert client.bucket.uploads == []
