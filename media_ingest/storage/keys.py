import re

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def safe_filename(filename: str) -> str:
    """Reduce a client filename to a single path-safe component."""
    name = filename.replace("\\", "/").rsplit("/", 1)[-1]
    name = _UNSAFE.sub("_", name).strip("._")
    return name[:200] or "upload"


def source_key(owner_id: str, content_hash: str, filename: str) -> str:
    """Build the object key for an assembled upload.

    uploads/{owner}/{hash[:2]}/{hash}/{filename}
    """
    owner = _UNSAFE.sub("_", owner_id) or "anonymous"
    return f"uploads/{owner}/{content_hash[:2]}/{content_hash}/{safe_filename(filename)}"


def rendition_prefix(content_hash: str) -> str:
    """Prefix for all derived outputs of one content hash."""
    return f"renditions/{content_hash[:2]}/{content_hash}"


def rendition_key(content_hash: str, profile_name: str, filename: str) -> str:
    return f"{rendition_prefix(content_hash)}/{safe_filename(profile_name)}/{filename}"


def thumbnail_key(content_hash: str) -> str:
    return f"{rendition_prefix(content_hash)}/thumbnail.jpg"


def manifest_key(content_hash: str) -> str:
    return f"{rendition_prefix(content_hash)}/master.m3u8"
