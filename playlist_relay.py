"""
Генерация плейлистов через Anthropic Messages API.

Собирает текстовый промпт из контекста времени, предпочтений пользователя и
доступных треков, отправляет его модели и достаёт JSON из ответа.
"""
import json
import logging
import re

import requests

import settings


logger = logging.getLogger(__name__)

JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")

PROMPT_TEMPLATE = """You are a music curator AI. Create a personalized playlist based on this data:

TIME CONTEXT: {time_of_day} ({hour}:00) on {day}
MOOD: {mood}
ENERGY LEVEL: {energy}

USER PREFERENCES:
- Liked tracks: {liked_count} songs
- Disliked tracks: {disliked_count} songs
- Top genres: {top_genres}

AVAILABLE TRACKS: {track_count} songs

PLAYLIST TYPE: {playlist_type}

Select {requested_length} tracks that best match the current time/mood and user preferences.

Available tracks:
{track_lines}

Return a JSON object with this exact format:
{{
  "title": "Playlist Name Here",
  "description": "Brief explanation of why this playlist fits the current time and user preferences",
  "playlist": [
    {{"id": "track_id_from_available_tracks", "reason": "why this track was selected"}},
    {{"id": "another_track_id", "reason": "selection reasoning"}}
  ]
}}

Focus on:
1. Time-appropriate energy levels
2. Mood matching for current time of day
3. User's genre preferences
4. Variety while maintaining cohesion"""


class PlaylistRelayError(Exception):
    """Ошибка внешнего API или неразборчивый ответ модели."""


def format_track(track):
    """Одна строка описания трека для промпта."""
    return (
        f"ID: {track.get('id')} | \"{track.get('title')}\" by {track.get('singer')} | "
        f"Genres: {track.get('genre1')}, {track.get('genre2')} | "
        f"Moods: {track.get('mood1')}, {track.get('mood2')}, {track.get('mood3')} | "
        f"{track.get('prompt')}"
    )


def build_prompt(request: dict, track_limit: int = settings.PLAYLIST_TRACK_LIMIT) -> str:
    """
    Построение промпта для модели.

    Args:
        request: Тело запроса {timeContext, userPreferences, availableTracks,
            requestedLength, type}
        track_limit: Сколько треков перечислить в промпте

    Returns:
        Текст промпта
    """
    time_context = request["timeContext"]
    preferences = request["userPreferences"]
    tracks = request["availableTracks"]

    genre_scores = preferences.get("genreScores") or {}
    ranked = sorted(genre_scores.items(), key=lambda item: item[1], reverse=True)

    return PROMPT_TEMPLATE.format(
        time_of_day=time_context.get("timeOfDay"),
        hour=time_context.get("hour"),
        day=time_context.get("day"),
        mood=time_context.get("mood"),
        energy=time_context.get("energy"),
        liked_count=len(preferences["likes"]),
        disliked_count=len(preferences["dislikes"]),
        top_genres=", ".join(genre for genre, _ in ranked[:3]),
        track_count=len(tracks),
        playlist_type=request.get("type"),
        requested_length=request.get("requestedLength"),
        track_lines="\n".join(format_track(track) for track in tracks[:track_limit]),
    )


def extract_playlist(text: str):
    """
    Извлечение JSON-объекта из свободного текста ответа.

    Берётся всё от первой "{" до последней "}". Содержимое не проверяется.
    """
    match = JSON_OBJECT_RE.search(text or "")
    if not match:
        raise PlaylistRelayError("Could not parse AI response")
    try:
        return json.loads(match.group(0))
    except ValueError as e:
        raise PlaylistRelayError(f"Could not parse AI response: {e}") from e


class PlaylistRelay:
    """Клиент к Anthropic для генерации плейлистов."""

    def __init__(self, api_url=None, model=None, max_tokens=None, timeout=None):
        self.api_url = api_url or settings.ANTHROPIC_API_URL
        self.model = model or settings.PLAYLIST_MODEL
        self.max_tokens = max_tokens or settings.PLAYLIST_MAX_TOKENS
        self.timeout = timeout or settings.LLM_TIMEOUT_SEC
        self.request_stats = {"success": 0, "failed": 0}

    def request_completion(self, prompt: str, api_key: str) -> str:
        """
        Запрос к Messages API.

        Returns:
            Текст первого блока ответа модели
        """
        response = requests.post(
            self.api_url,
            headers={
                "Content-Type": "application/json",
                "x-api-key": api_key,
                "anthropic-version": settings.ANTHROPIC_VERSION,
            },
            json={
                "model": self.model,
                "max_tokens": self.max_tokens,
                "messages": [{"role": "user", "content": prompt}],
            },
            timeout=self.timeout,
        )
        if not response.ok:
            raise PlaylistRelayError(f"Anthropic API error: {response.status_code}")

        try:
            return response.json()["content"][0]["text"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise PlaylistRelayError(f"Unexpected Anthropic response: {e}") from e

    def generate(self, request: dict, api_key: str):
        """
        Генерация плейлиста: промпт -> модель -> JSON.

        Args:
            request: Тело запроса клиента
            api_key: Ключ Anthropic

        Returns:
            Объект {title, description, playlist} в том виде, как его вернула модель
        """
        try:
            prompt = build_prompt(request)
            content = self.request_completion(prompt, api_key)
            playlist = extract_playlist(content)
        except Exception:
            self.request_stats["failed"] += 1
            raise
        self.request_stats["success"] += 1
        logger.info("✓ Плейлист сгенерирован")
        return playlist
