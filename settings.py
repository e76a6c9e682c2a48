"""
Конфигурация сервиса IranMix.

Все значения можно переопределить через переменные окружения.
"""
import os
from pathlib import Path


# HTTP
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 3001))

# Хранилище пользователей: "file" (JSON-файл на пользователя) или "memory"
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "file").strip().lower()
USER_DATA_DIR = Path(os.getenv("USER_DATA_DIR", "./user_data"))

# Максимум записей в каждой категории истории (played / liked / skipped)
MAX_HISTORY_PER_CATEGORY = int(os.getenv("MAX_HISTORY_PER_CATEGORY", 1000))
RECENT_ACTIVITY_LIMIT = 20
TOP_GENRES_LIMIT = 5

# Генерация плейлистов через Anthropic
ANTHROPIC_API_URL = os.getenv("ANTHROPIC_API_URL", "https://api.anthropic.com/v1/messages")
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")
ANTHROPIC_VERSION = "2023-06-01"
PLAYLIST_MODEL = os.getenv("PLAYLIST_MODEL", "claude-3-sonnet-20240229")
PLAYLIST_MAX_TOKENS = int(os.getenv("PLAYLIST_MAX_TOKENS", 2000))
PLAYLIST_TRACK_LIMIT = 50
LLM_TIMEOUT_SEC = float(os.getenv("LLM_TIMEOUT_SEC", 60))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
