from collections.abc import Mapping

from media_ingest.ingest.exceptions import ValidationError

ALLOWED_METADATA_FIELDS = frozenset(
    {"title", "description", "tags", "category", "language", "visibility"}
)
MAX_METADATA_VALUE_LENGTH = 5000


def validate_metadata(raw: Mapping[str, object] | None) -> dict[str, str]:
    """Normalize a client metadata payload into a string map.

    Raises:
        ValidationError: on unknown keys, non-scalar values or oversized values.
    """
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ValidationError("metadata must be an object")

    unknown = sorted(set(raw) - ALLOWED_METADATA_FIELDS)
    if unknown:
        raise ValidationError(
            f"Unsupported metadata fields: {unknown}. "
            f"Allowed: {sorted(ALLOWED_METADATA_FIELDS)}"
        )

    cleaned: dict[str, str] = {}
    for key, value in raw.items():
        if isinstance(value, (list, tuple)) and key == "tags":
            value = ",".join(str(tag).strip() for tag in value if str(tag).strip())
        if not isinstance(value, (str, int, float)) or isinstance(value, bool):
            raise ValidationError(f"metadata.{key} must be a string")
        text = str(value)
        if len(text) > MAX_METADATA_VALUE_LENGTH:
            raise ValidationError(
                f"metadata.{key} exceeds {MAX_METADATA_VALUE_LENGTH} characters"
            )
        cleaned[key] = text
    return cleaned
