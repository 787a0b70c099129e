import mimetypes
import os
from uuid import uuid4


def guess_kind(path: str) -> str:
    """Return 'audio' | 'video' | 'other' based on mimetype/extension."""
    mime, _ = mimetypes.guess_type(path)
    if not mime:
        return "other"
    if mime.startswith("audio/"):
        return "audio"
    if mime.startswith("video/"):
        return "video"
    return "other"


def upload_key_for(filename: str) -> str:
    """Namespaced key for a direct upload: uploads/<uuid>_<filename>."""
    return f"uploads/{uuid4().hex}_{os.path.basename(filename)}"
