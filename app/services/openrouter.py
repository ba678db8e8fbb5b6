"""Integration helpers for the OpenRouter API."""

from __future__ import annotations

import logging

import httpx

from ..config import Settings
from ..models import PreferenceItem, PreferencePayload
from ..utils import extract_suggestion_lines

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are KinoPicks, a film and television recommender for a kino.pub subscriber. "
    "You answer with a plain list of titles, one per line, formatted as Title (Year), "
    "and never add commentary."
)

KIND_LABELS = {
    "movie": "movies",
    "series": "TV shows",
    None: "movies and TV shows",
}


def _format_item(item: PreferenceItem) -> str:
    line = item.title
    if item.year:
        line += f" ({item.year})"
    if item.rating is not None:
        line += f" [Rating: {item.rating}/10]"
    if item.notes:
        line += f" - {item.notes}"
    return line


def _format_title(item: PreferenceItem) -> str:
    return f"{item.title} ({item.year})" if item.year else item.title


def build_prompt(payload: PreferencePayload) -> str:
    """Render the preference payload as the user message."""

    label = KIND_LABELS.get(payload.kind, KIND_LABELS[None])
    sections = [
        f"Based on my viewing history and preferences, please recommend {label} I would enjoy."
    ]

    def add_section(heading: str, lines: list[str]) -> None:
        if lines:
            sections.append(heading + "\n" + "\n".join(lines))

    add_section("CONTENT I LOVED (8-10/10):", [_format_item(i) for i in payload.loved])
    add_section("CONTENT I LIKED (6-7/10):", [_format_item(i) for i in payload.liked])
    add_section(
        "CONTENT I DISLIKED (1-5/10) - AVOID SIMILAR:",
        [_format_item(i) for i in payload.disliked],
    )
    add_section(
        "OTHER WATCHED CONTENT - DO NOT RECOMMEND THESE:",
        [_format_item(i) for i in payload.unrated],
    )
    add_section(
        "STARTED BUT NOT FINISHED - DO NOT RECOMMEND THESE:",
        [_format_title(i) for i in payload.partially_watched],
    )
    add_section(
        "ALREADY BOOKMARKED - DO NOT RECOMMEND THESE:", list(payload.bookmarked_titles)
    )
    add_section(
        "NOT INTERESTED - NEVER RECOMMEND THESE OR ANYTHING VERY SIMILAR:",
        list(payload.not_interested_titles),
    )

    watched = [
        _format_title(item)
        for group in (payload.loved, payload.liked, payload.disliked, payload.unrated)
        for item in group
    ]
    exclusion_list = list(
        dict.fromkeys(
            watched
            + [_format_title(i) for i in payload.partially_watched]
            + list(payload.bookmarked_titles)
            + list(payload.not_interested_titles)
        )
    )
    add_section(
        "COMPLETE EXCLUSION LIST - NEVER RECOMMEND ANY OF THESE:", exclusion_list
    )

    upper = max(payload.limit, 1)
    lower = min(8, upper)
    sections.append(
        f"Please recommend {lower}-{upper} {label} that I would likely enjoy. Consider:\n"
        "1. My ratings and notes to understand what I like and dislike\n"
        "2. Patterns in genres, themes and styles I enjoy\n"
        "3. Avoid content similar to what I disliked\n"
        "4. NEVER recommend anything from the EXCLUSION LIST above\n"
        "5. Include both popular titles and hidden gems\n"
        "6. Mix recent releases with classics\n"
        "7. No animation\n\n"
        "IMPORTANT: Provide titles in English only for consistency with search.\n\n"
        "Format your response as a simple list, one per line:\n"
        "Title (Year)\n\n"
        "Do not include explanations, just the list."
    )
    return "\n\n".join(sections)


class OpenRouterClient:
    """Client responsible for talking to OpenRouter."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    async def generate_suggestions(
        self,
        payload: PreferencePayload,
        *,
        api_key: str | None = None,
        model: str | None = None,
    ) -> list[str]:
        """Return raw ``"Title (Year)"`` lines for the given preferences."""

        resolved_model = model or self._settings.openrouter_model
        resolved_key = api_key or self._settings.openrouter_api_key
        if not resolved_key:
            raise RuntimeError("OpenRouter API key is required to generate suggestions")

        body = {
            "model": resolved_model,
            "temperature": 0.9,
            "max_tokens": 1500,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_prompt(payload)},
            ],
        }
        headers = {
            "Authorization": f"Bearer {resolved_key}",
            "Content-Type": "application/json",
            "X-Title": self._settings.app_name,
        }

        response = await self._client.post("/chat/completions", json=body, headers=headers)
        if response.status_code >= 400:
            raise RuntimeError(response.text)

        data = response.json()
        choices = data.get("choices", []) if isinstance(data, dict) else []
        if not choices:
            raise RuntimeError("Model returned no choices")
        message = choices[0].get("message", {})
        content = message.get("content")
        if not isinstance(content, str):
            raise RuntimeError("Model response missing content")

        lines = extract_suggestion_lines(content, limit=payload.limit)
        logger.info("Model %s produced %s suggestion line(s)", resolved_model, len(lines))
        return lines
