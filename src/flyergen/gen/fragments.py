from __future__ import annotations

from pathlib import Path
from typing import Iterable, Literal, Optional, Protocol

import yaml
from pydantic import BaseModel, ConfigDict, Field

EVENT_TYPE = "event_type"
STYLE_PRESET = "style_preset"


class PromptFragment(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)
    category: Literal["event_type", "style_preset"]
    subcategory: str
    content: str
    is_active: bool = True
    version: int = Field(default=1, ge=1)


class FragmentFile(BaseModel):
    model_config = ConfigDict(extra="forbid")
    fragments: list[PromptFragment] = Field(default_factory=list)


class PromptFragmentStore(Protocol):
    def find_active_fragment(self, category: str, subcategory: str) -> Optional[PromptFragment]: ...


class InMemoryFragmentStore:
    """Holds fragments in memory and answers with the newest active version.

    Among active fragments with equal version the earliest one wins.
    """

    def __init__(self, fragments: Iterable[PromptFragment] = ()):
        self._fragments: tuple[PromptFragment, ...] = tuple(fragments)

    def __len__(self) -> int:
        return len(self._fragments)

    def find_active_fragment(self, category: str, subcategory: str) -> Optional[PromptFragment]:
        matches = [
            f
            for f in self._fragments
            if f.is_active and f.category == category and f.subcategory == subcategory
        ]
        if not matches:
            return None
        return max(matches, key=lambda f: f.version)

    @property
    def fragments(self) -> tuple[PromptFragment, ...]:
        return self._fragments

    def with_fragments(self, extra: Iterable[PromptFragment]) -> "InMemoryFragmentStore":
        return InMemoryFragmentStore(self._fragments + tuple(extra))


class YamlFragmentStore(InMemoryFragmentStore):
    def __init__(self, path: Path, fragments: Iterable[PromptFragment] = ()):
        super().__init__(fragments)
        self.path = path

    @classmethod
    def from_file(cls, path: Path) -> "YamlFragmentStore":
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise ValueError(f"YAML root must be a mapping: {path}")
        parsed = FragmentFile.model_validate(data)
        return cls(path, parsed.fragments)


_DEFAULT_EVENT_PROMPTS = {
    "BIRTHDAY_PARTY": (
        "vibrant birthday party celebration with colorful balloons, confetti, and festive "
        "decorations, warm and joyful atmosphere with bright lighting"
    ),
    "WEDDING": (
        "elegant wedding celebration with romantic floral arrangements, soft lighting, and "
        "sophisticated decor, timeless and romantic atmosphere with warm golden tones"
    ),
    "CORPORATE_EVENT": (
        "professional corporate event with modern business aesthetics, clean lines, and "
        "sophisticated design elements, professional and trustworthy atmosphere with corporate "
        "color schemes"
    ),
    "HOLIDAY_CELEBRATION": (
        "festive holiday celebration with seasonal decorations, warm lighting, and traditional "
        "holiday elements, joyful and celebratory atmosphere with holiday color palettes"
    ),
    "CONCERT": (
        "dynamic concert event with energetic lighting, stage effects, and musical atmosphere, "
        "exciting and vibrant mood with dramatic lighting and performance energy"
    ),
    "SPORTS_EVENT": (
        "action-packed sports event with dynamic movement, competitive energy, and athletic "
        "atmosphere, energetic and competitive mood with sports equipment and arena elements"
    ),
    "NIGHTLIFE": (
        "vibrant nightlife event with neon lighting, urban atmosphere, and contemporary club "
        "aesthetics, exciting and energetic mood with modern urban elements and nightlife energy"
    ),
}


def default_fragments() -> list[PromptFragment]:
    return [
        PromptFragment(category=EVENT_TYPE, subcategory=event_type, content=content)
        for event_type, content in _DEFAULT_EVENT_PROMPTS.items()
    ]
