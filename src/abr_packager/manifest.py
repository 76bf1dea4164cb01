"""HLS master manifest assembly."""

import os
import tempfile
from pathlib import Path
from typing import List, Sequence, Union

from loguru import logger

from .models import ManifestConfig, RenditionEntry


def build_master_playlist(entries: Sequence[RenditionEntry], version: int = 3) -> str:
    """Render master playlist text, one stream reference per entry, in the given order."""
    lines = ["#EXTM3U", f"#EXT-X-VERSION:{version}"]
    for entry in entries:
        profile = entry.profile
        lines.append(
            f"#EXT-X-STREAM-INF:BANDWIDTH={profile.bandwidth_bps},RESOLUTION={profile.resolution}"
        )
        lines.append(entry.playlist_path.replace("\\", "/"))
    return "\n".join(lines) + "\n"


def write_atomic(path: Path, content: str) -> None:
    """Write via a temp file in the same directory and ``os.replace`` it into place."""
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class ManifestAssembler:
    """Writes the master manifest once every rendition has succeeded."""

    def __init__(self, config: ManifestConfig = None):
        self.config = config or ManifestConfig()

    def manifest_path(self, output_root: Union[str, Path]) -> Path:
        return Path(output_root) / self.config.filename

    def assemble(self, output_root: Union[str, Path], successes: List[RenditionEntry]) -> Path:
        """Build and persist the master manifest.

        Args:
            output_root: Package root directory (already exists)
            successes: Renditions in catalog order

        Returns:
            Path of the written manifest

        Raises:
            OSError: If the manifest cannot be written
        """
        path = self.manifest_path(output_root)
        write_atomic(path, build_master_playlist(successes, self.config.version))
        logger.info("Wrote master manifest {} ({} renditions)", path, len(successes))
        return path
