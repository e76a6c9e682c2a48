"""
Скрипт проверки работы API-сервиса IranMix.

Проверяет эндпоинты запущенного сервера и сохраняет результаты в лог-файл.
"""
import logging
import os
import time
import uuid
from datetime import datetime

import requests


# Настройка логирования
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler('service_test.log', mode='w'),
        logging.StreamHandler()
    ]
)

logger = logging.getLogger(__name__)


# URL сервиса
API_MAIN_URL = os.getenv("IRANMIX_API_URL", "http://127.0.0.1:3001")

TEST_TRACKS = [
    {"id": "t1", "title": "Gole Sangam", "singer": "Shajarian", "genre1": "classical"},
    {"id": "t2", "title": "Soltane Ghalbha", "singer": "Aref", "genre1": "pop"},
]


def check_service_health(url):
    """Проверка работоспособности сервиса."""
    try:
        response = requests.get(f"{url}/api/health", timeout=2)
        if response.status_code == 200:
            logger.info(f"✓ Сервис работает: {response.json().get('message')}")
            return True
        else:
            logger.error(f"✗ Ошибка {response.status_code}")
            return False
    except Exception as e:
        logger.error(f"✗ Сервис недоступен - {e}")
        return False


def check_new_user(user_id):
    """Новый пользователь получает пустую запись."""
    logger.info("\n=== Проверка нового пользователя ===")

    try:
        response = requests.get(f"{API_MAIN_URL}/api/user/{user_id}", timeout=5)
        if response.status_code != 200:
            logger.error(f"✗ Ошибка: {response.status_code}")
            return False

        data = response.json()
        if data.get("stats") != {"played": 0, "liked": 0, "disliked": 0}:
            logger.error(f"✗ Неожиданные счётчики: {data.get('stats')}")
            return False
        logger.info("✓ Запись по умолчанию корректная")
        return True

    except Exception as e:
        logger.error(f"✗ Исключение: {e}")
        return False


def check_actions(user_id):
    """Логирование действий и статистика."""
    logger.info("\n=== Проверка действий пользователя ===")

    actions = [
        ("play", TEST_TRACKS[0]),
        ("like", TEST_TRACKS[0]),
        ("skip", TEST_TRACKS[1]),
    ]

    try:
        for action, track in actions:
            response = requests.post(
                f"{API_MAIN_URL}/api/user/{user_id}/action",
                json={"action": action, "track": track},
                timeout=5
            )
            if response.status_code != 200:
                logger.error(f"✗ {action}: ошибка {response.status_code}")
                return False
            logger.info(f"  ✓ {response.json().get('message')}")
            # Разные timestamp для корректного порядка
            time.sleep(0.01)

        start = time.time()
        response = requests.get(f"{API_MAIN_URL}/api/user/{user_id}/stats", timeout=5)
        elapsed = time.time() - start

        if response.status_code != 200:
            logger.error(f"✗ Ошибка: {response.status_code}")
            return False

        stats = response.json()
        logger.info(f"✓ Статистика получена за {elapsed:.3f}с")
        logger.info(
            f"  played={stats['totalPlayed']} liked={stats['totalLiked']} "
            f"skipped={stats['totalSkipped']}"
        )

        order = [item["action"] for item in stats["recentActivity"]]
        if order == ["skipped", "liked", "played"]:
            logger.info("✓ Порядок активности корректный (обратный хронологический)")
            return True
        logger.warning(f"⚠ Неожиданный порядок активности: {order}")
        return False

    except Exception as e:
        logger.error(f"✗ Исключение: {e}")
        return False


def check_overwrite(user_id):
    """Полная перезапись и чтение списков."""
    logger.info("\n=== Проверка перезаписи данных ===")

    record = {
        "stats": {"played": 5, "liked": 2, "disliked": 1},
        "userPreferences": {
            "plays": {}, "likes": [], "dislikes": [],
            "genreScores": {"pop": 3, "classical": 7},
        },
        "history": {"played": [], "liked": [], "skipped": []},
        "lastUpdated": "1999-01-01T00:00:00.000Z",
    }

    try:
        response = requests.post(f"{API_MAIN_URL}/api/user/{user_id}", json=record, timeout=5)
        if response.status_code != 200:
            logger.error(f"✗ Ошибка: {response.status_code}")
            return False

        data = requests.get(f"{API_MAIN_URL}/api/user/{user_id}", timeout=5).json()
        if data["lastUpdated"] == record["lastUpdated"]:
            logger.error("✗ lastUpdated был принят от клиента")
            return False

        lists = requests.get(f"{API_MAIN_URL}/api/user/{user_id}/lists", timeout=5).json()
        sizes = {key: len(value) for key, value in lists.items()}
        logger.info(f"✓ Размеры списков: {sizes}")

        genres = requests.get(f"{API_MAIN_URL}/api/user/{user_id}/stats", timeout=5).json()["topGenres"]
        logger.info(f"  Топ жанров: {genres}")
        return genres[0]["genre"] == "classical"

    except Exception as e:
        logger.error(f"✗ Исключение: {e}")
        return False


def check_unknown_route():
    """Неизвестный маршрут возвращает 404."""
    logger.info("\n=== Проверка неизвестного маршрута ===")

    try:
        response = requests.get(f"{API_MAIN_URL}/api/does-not-exist", timeout=2)
        if response.status_code == 404 and "error" in response.json():
            logger.info("✓ 404 с полем error")
            return True
        logger.error(f"✗ Ошибка: {response.status_code}")
        return False

    except Exception as e:
        logger.error(f"✗ Исключение: {e}")
        return False


def run_all_checks():
    """Запуск всех проверок."""
    logger.info("="*60)
    logger.info(f"НАЧАЛО ПРОВЕРКИ: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    logger.info("="*60)

    logger.info("\n### Проверка доступности сервиса ###")
    if not check_service_health(API_MAIN_URL):
        logger.error("\n✗ Сервис недоступен. Проверьте запуск:")
        logger.error("  uvicorn api_main:app --port 3001")
        return

    # Отдельный пользователь на каждый запуск
    user_id = f"verify-{uuid.uuid4().hex[:8]}"

    logger.info("\n### Функциональные проверки ###")

    checks = [
        ("Новый пользователь", lambda: check_new_user(user_id)),
        ("Действия и статистика", lambda: check_actions(user_id)),
        ("Перезапись данных", lambda: check_overwrite(user_id)),
        ("Неизвестный маршрут", check_unknown_route),
    ]

    results = []
    for check_name, check_func in checks:
        logger.info(f"\nЗапуск проверки: {check_name}")
        try:
            result = check_func()
            results.append((check_name, result))
        except Exception as e:
            logger.error(f"✗ Критическая ошибка в проверке: {e}")
            results.append((check_name, False))

    # Итоговая статистика
    logger.info("\n" + "="*60)
    logger.info("ИТОГИ ПРОВЕРКИ")
    logger.info("="*60)

    passed = sum(1 for _, result in results if result)
    total = len(results)

    for check_name, result in results:
        status = "✓ PASSED" if result else "✗ FAILED"
        logger.info(f"{status}: {check_name}")

    logger.info(f"\nВсего проверок: {total}")
    logger.info(f"Успешно: {passed}")
    logger.info(f"Провалено: {total - passed}")

    logger.info("\n" + "="*60)
    logger.info(f"ЗАВЕРШЕНО: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    logger.info("="*60)

    logger.info("\nЛог сохранён в файл: service_test.log")


if __name__ == "__main__":
    run_all_checks()
