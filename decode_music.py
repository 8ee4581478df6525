#!/usr/bin/env python3
from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

from stillreel.config import Config
from stillreel.services.music_assets import decode_music_assets


def main():
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"), format="%(levelname)s %(name)s: %(message)s")
    written = decode_music_assets(Config.MUSIC_DIR)
    for path in written:
        print(f"Decoded -> {path}")
    if not written:
        print(f"No .b64 music files found under {Config.MUSIC_DIR}")


if __name__ == "__main__":
    main()
