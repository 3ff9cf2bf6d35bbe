"""
File attachments for multipart create/update requests (e.g. a course's featured image).
"""

import mimetypes
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class Attachment:
    """A file part: name shown to the server, raw bytes, MIME type."""
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"

    @classmethod
    def from_path(cls, file_path: str | Path) -> "Attachment":
        file_name, file_bytes = _read_file(file_path)
        return cls(file_name, file_bytes, _content_type(file_name))

    def __repr__(self) -> str:
        return f"Attachment({self.filename!r}, {len(self.content)} bytes, {self.content_type!r})"


def _read_file(file_path: str | Path) -> tuple[str, bytes]:
    """Read a file and return (filename, raw bytes)."""
    p = Path(file_path).expanduser().resolve()
    if not p.is_file():
        raise ValueError(f"File not found: {file_path}")
    return p.name, p.read_bytes()


def _content_type(filename: str) -> str:
    """Infer MIME content type from filename."""
    mime, _ = mimetypes.guess_type(filename)
    return mime or "application/octet-stream"
