from __future__ import annotations

import base64
import binascii
import logging
from pathlib import Path

LOGGER = logging.getLogger(__name__)


def decode_music_assets(music_dir: Path | str) -> list[Path]:
    """Decode ``*.b64`` files below ``music_dir`` into binary audio files.

    ``ambient.mp3.b64`` becomes ``ambient.mp3``. Empty or undecodable files are
    skipped and logged.
    """
    root = Path(music_dir)
    root.mkdir(parents=True, exist_ok=True)
    written: list[Path] = []
    for encoded in sorted(root.rglob("*.b64")):
        try:
            payload = encoded.read_text(encoding="utf-8").strip()
            if not payload:
                continue
            data = base64.b64decode(payload, validate=False)
            target = encoded.with_suffix("")
            target.write_bytes(data)
        except (OSError, UnicodeDecodeError, binascii.Error) as exc:
            LOGGER.warning("music_decode_failed", extra={"file": encoded.name, "error": str(exc)})
            continue
        LOGGER.info("music_decoded", extra={"file": encoded.name, "target": target.name, "size": len(data)})
        written.append(target)
    return written


__all__ = ["decode_music_assets"]
