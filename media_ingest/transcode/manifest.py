from media_ingest.transcode.profiles import TranscodeProfile

MANIFEST_CONTENT_TYPE = "application/vnd.apple.mpegurl"


class ManifestBuilder:
    """Builds the HLS master playlist for an asset's renditions."""

    def build(self, renditions: list[tuple[TranscodeProfile, str]]) -> str:
        """Render the master playlist.

        Args:
            renditions: (profile, playlist URI relative to the master) pairs
                for successful renditions only.

        Raises:
            ValueError: if renditions is empty.
        """
        if not renditions:
            raise ValueError("A master playlist needs at least one rendition")
        ordered = sorted(renditions, key=lambda item: item[0].bandwidth, reverse=True)
        lines = ["#EXTM3U", "#EXT-X-VERSION:3"]
        for profile, uri in ordered:
            lines.append(
                f"#EXT-X-STREAM-INF:BANDWIDTH={profile.bandwidth},"
                f"RESOLUTION={profile.width}x{profile.height},"
                f'NAME="{profile.name}"'
            )
            lines.append(uri)
        return "\n".join(lines) + "\n"
