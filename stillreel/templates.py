from __future__ import annotations

from dataclasses import dataclass

STYLE_ZOOM = "zoom"
STYLE_SLIDE = "slide"


@dataclass(frozen=True)
class Template:
    id: str
    name: str
    style: str
    duration_seconds: int
    # Relative to the configured music directory.
    music_file: str

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "style": self.style,
            "duration_seconds": self.duration_seconds,
            "music_file": self.music_file,
        }


TEMPLATES: tuple[Template, ...] = (
    Template(
        id="zoom-ambient",
        name="Ambient Zoom",
        style=STYLE_ZOOM,
        duration_seconds=6,
        music_file="musics/ambient.mp3",
    ),
    Template(
        id="slide-funky",
        name="Funky Slide",
        style=STYLE_SLIDE,
        duration_seconds=6,
        music_file="musics/funky.mp3",
    ),
)


def get_template_by_id(template_id: str | None, templates=TEMPLATES) -> Template | None:
    if not template_id:
        return None
    return next((template for template in templates if template.id == template_id), None)


__all__ = ["Template", "TEMPLATES", "STYLE_ZOOM", "STYLE_SLIDE", "get_template_by_id"]
