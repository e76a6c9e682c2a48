"""
Хранилище активности пользователей.

Хранит по одной записи на пользователя: счётчики, предпочтения и историю
прослушиваний / лайков / пропусков. Поддерживаются два бэкенда с одинаковым
контрактом: в памяти процесса и JSON-файл на пользователя.
"""
import copy
import hashlib
import json
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import pandas as pd

import settings


# action -> (категория истории, счётчик в stats)
ACTIONS = {
    "play": ("played", "played"),
    "like": ("liked", "liked"),
    "skip": ("skipped", "disliked"),
}
HISTORY_KEYS = ("played", "liked", "skipped")


class StoreUnavailable(Exception):
    """Ошибка ввода-вывода или сериализации при работе с хранилищем."""


def utc_timestamp():
    """Текущее время в ISO-8601 (UTC, с суффиксом Z)."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


def legacy_track_id(track):
    """
    Идентификатор трека в истории: title + "_" + singer.

    Два разных трека с одинаковыми title и singer получат один и тот же
    идентификатор. Собственное поле id трека здесь не используется.
    """
    return f"{track.get('title')}_{track.get('singer')}"


def user_id_from_fingerprint(fingerprint: Optional[str] = None) -> str:
    """
    Получение user id из отпечатка клиента.

    Args:
        fingerprint: Строка-отпечаток браузера. Если не задан, используется
            текущее время в миллисекундах.

    Returns:
        Первые 16 hex-символов SHA-256
    """
    source = fingerprint or str(int(time.time() * 1000))
    return hashlib.sha256(source.encode("utf-8")).hexdigest()[:16]


def default_user_record(user_id, last_updated=None):
    """Пустая запись пользователя: нулевые счётчики и пустые коллекции."""
    return {
        "userId": user_id,
        "stats": {"played": 0, "liked": 0, "disliked": 0},
        "userPreferences": {
            "plays": {},
            "likes": [],
            "dislikes": [],
            "genreScores": {},
        },
        "history": {key: [] for key in HISTORY_KEYS},
        "lastUpdated": last_updated or utc_timestamp(),
    }


def top_genres(genre_scores: dict, limit: int = settings.TOP_GENRES_LIMIT):
    """
    Топ жанров по score.

    Сортировка устойчивая: при равных score сохраняется порядок словаря.
    """
    if not genre_scores:
        return []
    scores = pd.Series(genre_scores, dtype="float64")
    ranked = scores.sort_values(ascending=False, kind="mergesort").head(limit)
    return [{"genre": genre, "score": genre_scores[genre]} for genre in ranked.index]


def recent_activity(history: dict, limit: int = settings.RECENT_ACTIVITY_LIMIT):
    """
    Последние действия из всех трёх категорий истории.

    Args:
        history: Словарь {played, liked, skipped}
        limit: Максимальное количество записей

    Returns:
        Записи с полем action, отсортированные по timestamp (новые первыми)
    """
    tagged = []
    for key in HISTORY_KEYS:
        tagged.extend({**item, "action": key} for item in history.get(key) or [])
    if not tagged:
        return []

    # Записи без валидного timestamp уходят в конец
    timestamps = pd.to_datetime(
        pd.Series([item.get("timestamp") for item in tagged], dtype="object"),
        utc=True,
        errors="coerce",
        format="ISO8601",
    )
    order = timestamps.sort_values(
        ascending=False, kind="mergesort", na_position="last"
    ).index[:limit]
    return [tagged[i] for i in order]


class UserActivityStore:
    """
    Базовый класс хранилища активности.

    Наследники реализуют только _load и _save. Операции над одним и тем же
    пользователем не атомарны: два параллельных record_action могут потерять
    инкремент (read-modify-write без блокировок).
    """

    def __init__(self, max_history: Optional[int] = None, clock=None):
        if max_history is None:
            max_history = settings.MAX_HISTORY_PER_CATEGORY
        if max_history < 1:
            raise ValueError(f"max_history должен быть >= 1, получено {max_history}")
        self.max_history = max_history
        self.clock = clock or utc_timestamp
        self.usage = {"reads": 0, "writes": 0, "actions": 0}

    def _load(self, user_id):
        """Запись пользователя или None, если её нет."""
        raise NotImplementedError

    def _save(self, user_id, record):
        raise NotImplementedError

    def get(self, user_id: str):
        """
        Получение записи пользователя.

        Для неизвестного пользователя возвращается запись по умолчанию,
        которая не сохраняется до первой записи.
        """
        self.usage["reads"] += 1
        record = self._load(user_id)
        if record is None:
            return default_user_record(user_id, self.clock())
        return record

    def put(self, user_id: str, record: dict):
        """
        Полная перезапись данных пользователя.

        userId и lastUpdated всегда выставляются хранилищем.
        """
        self._save(user_id, {**record, "userId": user_id, "lastUpdated": self.clock()})
        self.usage["writes"] += 1

    def record_action(self, user_id: str, action, track: dict):
        """
        Добавление одного действия (play, like, skip).

        Неизвестное действие ничего не меняет, кроме lastUpdated.

        Args:
            user_id: Идентификатор пользователя
            action: Тип действия
            track: Объект трека от клиента
        """
        record = self.get(user_id)
        entry = {
            **track,
            "timestamp": self.clock(),
            "trackId": legacy_track_id(track),
        }

        if not record.get("history"):
            record["history"] = {key: [] for key in HISTORY_KEYS}

        target = ACTIONS.get(action) if isinstance(action, str) else None
        if target is not None:
            history_key, stats_key = target
            record["history"][history_key].append(entry)
            record["stats"][stats_key] = (record["stats"].get(stats_key) or 0) + 1
            self.usage["actions"] += 1

        # Ограничение длины применяется ко всем категориям
        for key in list(record["history"]):
            if len(record["history"][key]) > self.max_history:
                record["history"][key] = record["history"][key][-self.max_history:]

        self.put(user_id, record)

    def derive_stats(self, user_id: str):
        """
        Статистика по текущей (возможно обрезанной) истории.

        Returns:
            Словарь totalPlayed, totalLiked, totalSkipped, topGenres, recentActivity
        """
        record = self.get(user_id)
        history = record.get("history") or {}
        preferences = record.get("userPreferences") or {}
        return {
            "totalPlayed": len(history.get("played") or []),
            "totalLiked": len(history.get("liked") or []),
            "totalSkipped": len(history.get("skipped") or []),
            "topGenres": top_genres(preferences.get("genreScores") or {}),
            "recentActivity": recent_activity(history),
        }

    def list_history(self, user_id: str):
        """Списки played / liked / skipped без изменений."""
        history = self.get(user_id).get("history") or {}
        return {key: history.get(key) or [] for key in HISTORY_KEYS}


class InMemoryActivityStore(UserActivityStore):
    """Хранилище в памяти процесса. Данные теряются при перезапуске."""

    def __init__(self, max_history: Optional[int] = None, clock=None):
        super().__init__(max_history=max_history, clock=clock)
        self.records = {}

    def _load(self, user_id):
        # Вызывающий получает копию, каноническая запись остаётся здесь
        return copy.deepcopy(self.records.get(user_id))

    def _save(self, user_id, record):
        self.records[user_id] = copy.deepcopy(record)


class FileActivityStore(UserActivityStore):
    """
    Хранилище на файлах: <data_dir>/<user_id>.json.

    Отсутствующий файл означает нового пользователя. Любая другая ошибка
    чтения или записи поднимается как StoreUnavailable.
    """

    def __init__(self, data_dir=None, max_history: Optional[int] = None, clock=None):
        super().__init__(max_history=max_history, clock=clock)
        self.data_dir = Path(data_dir or settings.USER_DATA_DIR)

    def ensure_data_dir(self):
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, user_id: str) -> Path:
        return self.data_dir / f"{user_id}.json"

    def _load(self, user_id):
        try:
            raw = self.path_for(user_id).read_text(encoding="utf-8")
            return json.loads(raw)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            raise StoreUnavailable(f"Не удалось прочитать данные {user_id}: {e}") from e

    def _save(self, user_id, record):
        try:
            payload = json.dumps(record, indent=2, ensure_ascii=False)
            self.path_for(user_id).write_text(payload, encoding="utf-8")
        except (OSError, TypeError, ValueError) as e:
            raise StoreUnavailable(f"Не удалось сохранить данные {user_id}: {e}") from e


def build_store(backend: Optional[str] = None, data_dir=None, max_history: Optional[int] = None):
    """
    Создание хранилища по настройкам.

    Args:
        backend: "file" или "memory" (по умолчанию settings.STORAGE_BACKEND)
        data_dir: Каталог для файлового хранилища
        max_history: Лимит записей в каждой категории истории
    """
    backend = backend or settings.STORAGE_BACKEND
    if backend == "memory":
        return InMemoryActivityStore(max_history=max_history)
    if backend == "file":
        return FileActivityStore(data_dir=data_dir, max_history=max_history)
    raise ValueError(f"Неизвестный STORAGE_BACKEND: {backend}")
