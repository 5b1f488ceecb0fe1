from __future__ import annotations

import logging
import re
from typing import Any, Mapping, Optional

from jinja2 import ChainableUndefined, TemplateError
from jinja2.sandbox import SandboxedEnvironment, SecurityError

from flyergen.errors import PromptFragmentUnavailable

from .fragments import EVENT_TYPE, STYLE_PRESET, PromptFragmentStore

logger = logging.getLogger(__name__)

NO_STYLE = "No Style"

EVENT_TYPE_NAMES = {
    "BIRTHDAY_PARTY": "Birthday Party",
    "WEDDING": "Wedding",
    "CORPORATE_EVENT": "Corporate Event",
    "HOLIDAY_CELEBRATION": "Holiday Celebration",
    "CONCERT": "Concert",
    "SPORTS_EVENT": "Sports Event",
    "NIGHTLIFE": "Nightlife",
    "FAMILY_GATHERING": "Family Gathering",
    "BBQ": "BBQ",
    "PARK_GATHERING": "Park Gathering",
    "COMMUNITY_EVENT": "Community Event",
    "FUNDRAISER": "Fundraiser",
    "WORKSHOP": "Workshop",
    "MEETUP": "Meetup",
    "CELEBRATION": "Celebration",
    "REUNION": "Reunion",
    "POTLUCK": "Potluck",
    "GAME_NIGHT": "Game Night",
    "BOOK_CLUB": "Book Club",
    "ART_CLASS": "Art Class",
    "FITNESS_CLASS": "Fitness Class",
    "BREAKDANCING": "Breakdancing",
    "POTTERY": "Pottery",
}

_WHITESPACE_RE = re.compile(r"\s+")
_SPACE_BEFORE_COMMA_RE = re.compile(r"\s+,")
_REPEATED_COMMA_RE = re.compile(r",(\s*,)+")
_CAMEL_RE = re.compile(r"(?<=[a-z0-9])([A-Z])")

DETAIL_CLAUSES = {
    "BIRTHDAY_PARTY": (
        ("age", "{}th birthday celebration"),
        ("theme", "{} theme"),
        ("venue", "at {}"),
        ("guests", "{} guests"),
        ("activities", "featuring {}"),
        ("decorations", "with {}"),
    ),
    "WEDDING": (
        ("style", "{} style wedding"),
        ("colors", "{} color scheme"),
        ("venue", "at {}"),
        ("season", "{} season"),
        ("guests", "{} guests"),
        ("elements", "with {}"),
    ),
    "CORPORATE_EVENT": (
        ("event_type", "{} corporate event"),
        ("industry", "{} industry"),
        ("attendees", "{} attendees"),
        ("venue", "at {}"),
        ("formality", "{} dress code"),
        ("branding", "{} branding"),
    ),
    "HOLIDAY_CELEBRATION": (
        ("holiday", "{} celebration"),
        ("context", "{} context"),
        ("venue", "at {}"),
        ("people", "{} people"),
        ("traditions", "featuring {}"),
        ("decorations", "with {}"),
    ),
}
DEFAULT_DETAIL_CLAUSES = (
    ("venue", "at {}"),
    ("atmosphere", "{} atmosphere"),
    ("activities", "featuring {}"),
    ("decorations", "with {}"),
)
# Holiday contexts that repeat what the holiday name already says.
_REDUNDANT_HOLIDAY_CONTEXTS = frozenset({"Public Holiday"})


def event_display_name(event_type: str) -> str:
    if event_type in EVENT_TYPE_NAMES:
        return EVENT_TYPE_NAMES[event_type]
    return event_type.replace("_", " ").strip().title()


def minimal_context(event_type: str) -> str:
    return f"{event_display_name(event_type)} flyer theme"


def normalize_prompt(text: str) -> str:
    """Collapse whitespace and comma runs, strip leading and trailing separators."""
    text = _WHITESPACE_RE.sub(" ", text)
    text = _SPACE_BEFORE_COMMA_RE.sub(",", text)
    text = _REPEATED_COMMA_RE.sub(",", text)
    return text.strip(" ,")


def detail_key(key: str) -> str:
    """Map ``customText`` style keys to ``custom_text``."""
    return _CAMEL_RE.sub(r"_\1", key.strip()).lower()


def normalize_details(details: Optional[Mapping[str, Any]]) -> dict[str, Any]:
    """Drop ``None`` values and snake-case keys; an explicit snake_case key beats its camelCase twin."""
    details = details or {}
    normalized: dict[str, Any] = {}
    for key, value in details.items():
        if value is None:
            continue
        name = detail_key(str(key))
        if name != key and name in details:
            continue
        normalized[name] = value
    return normalized


def detail_clauses(event_type: str, details: Mapping[str, Any]) -> list[str]:
    clauses = []
    for key, template in DETAIL_CLAUSES.get(event_type, DEFAULT_DETAIL_CLAUSES):
        value = str(details.get(key) or "").strip()
        if not value:
            continue
        if key == "context" and value in _REDUNDANT_HOLIDAY_CONTEXTS:
            continue
        clauses.append(template.format(value))
    return clauses


def _fit(context: str, base: str, max_length: int) -> tuple[str, str]:
    if len(base) >= max_length:
        return "", base[:max_length].rstrip(" ,")
    budget = max_length - len(base) - len(", ")
    if budget <= 0:
        return "", base
    if len(context) <= budget:
        return context, base
    cut = context[:budget]
    if context[budget] != " " and " " in cut:
        cut = cut.rsplit(" ", 1)[0]
    return cut.rstrip(" ,"), base


class PromptAssembler:
    """Builds the final generation prompt from stored fragments and a base prompt.

    Composition order is ``[event context], [style fragment], [custom text], [base prompt]``.
    The event context carries one clause per recognised event detail
    (``"at <venue>"``, ``"<guests> guests"``) ahead of the stored fragment.
    Fragments are Jinja templates rendered in a sandbox against the event details.
    Fragment lookups that fail or come back empty fall back to the minimal
    ``"<Event Name> flyer theme"`` context; they never abort assembly.
    """

    def __init__(self, store: Optional[PromptFragmentStore] = None):
        self.store = store
        self.env = SandboxedEnvironment(
            undefined=ChainableUndefined,
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def _fragment(self, category: str, subcategory: str, details: Mapping[str, Any]) -> str:
        """Return rendered fragment content.

        Raises:
            PromptFragmentUnavailable: If the store is missing, errors, or has no active fragment.
        """
        if self.store is None:
            raise PromptFragmentUnavailable(category, subcategory, "no fragment store configured")
        try:
            fragment = self.store.find_active_fragment(category, subcategory)
        except Exception as e:
            raise PromptFragmentUnavailable(category, subcategory, str(e)) from e
        if fragment is None or not fragment.content.strip():
            raise PromptFragmentUnavailable(category, subcategory)
        return self._render(fragment.content, details)

    def _render(self, content: str, details: Mapping[str, Any]) -> str:
        try:
            return self.env.from_string(content).render(details)
        except SecurityError as e:
            logger.warning("Fragment template rejected by sandbox, using raw content: %s", e)
            return content
        except TemplateError as e:
            logger.warning("Fragment template failed to render, using raw content: %s", e)
            return content

    def event_context(self, event_type: str, details: Mapping[str, Any]) -> str:
        context = minimal_context(event_type)
        clauses = detail_clauses(event_type, details)
        try:
            content = normalize_prompt(self._fragment(EVENT_TYPE, event_type, details))
        except PromptFragmentUnavailable as e:
            logger.info("%s; using fallback context", e)
            return ", ".join([context, *clauses])
        if context.lower() in content.lower():
            return ", ".join([*clauses, content])
        return ", ".join([context, *clauses, content])

    def style_context(self, style_name: Optional[str], details: Mapping[str, Any]) -> Optional[str]:
        if not style_name or style_name == NO_STYLE:
            return None
        try:
            return normalize_prompt(self._fragment(STYLE_PRESET, style_name, details))
        except PromptFragmentUnavailable as e:
            logger.info("%s; omitting style", e)
            return None

    def assemble(
        self,
        base_prompt: str,
        event_type: Optional[str],
        event_details: Optional[Mapping[str, Any]] = None,
        style_name: Optional[str] = None,
        max_length: Optional[int] = None,
    ) -> str:
        details = normalize_details(event_details)

        segments = []
        if event_type:
            segments.append(self.event_context(event_type, details))
        style = self.style_context(style_name, details)
        if style:
            segments.append(style)
        custom_text = str(details.get("custom_text") or "").strip()
        if custom_text:
            segments.append(f'with text: "{custom_text}"')

        context = normalize_prompt(", ".join(segments))
        base = normalize_prompt(base_prompt or "")
        if max_length is not None:
            context, base = _fit(context, base, max_length)

        prompt = normalize_prompt(", ".join(p for p in (context, base) if p))
        logger.debug("Assembled prompt (%d chars): %s", len(prompt), prompt[:100])
        return prompt
