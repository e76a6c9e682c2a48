"""
Главный API-сервис IranMix.

Хранение истории прослушиваний пользователей и генерация плейлистов
через внешнюю LLM.
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import Body, Depends, FastAPI, Header
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

import settings
from event_storage import FileActivityStore, StoreUnavailable, build_store, utc_timestamp
from playlist_relay import PlaylistRelay


# Настройка логирования
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format='%(asctime)s - %(levelname)s - %(message)s',
)

logger = logging.getLogger(__name__)


# Глобальные объекты
activity_store = build_store()
playlist_relay = PlaylistRelay()


def get_store():
    """Хранилище активности (подменяется в тестах)."""
    return activity_store


def get_relay():
    return playlist_relay


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Управление жизненным циклом приложения."""
    if isinstance(activity_store, FileActivityStore):
        activity_store.ensure_data_dir()
        logger.info(f"✓ Каталог данных пользователей: {activity_store.data_dir}")
    logger.info(f"✓ IranMix сервер запущен (хранилище: {settings.STORAGE_BACKEND})")

    yield

    # Статистика при остановке
    logger.info("=== Статистика запросов ===")
    logger.info(f"Хранилище: {activity_store.usage}")
    logger.info(f"Плейлисты: {playlist_relay.request_stats}")
    logger.info("✓ IranMix сервер остановлен")


# Создание FastAPI приложения
app = FastAPI(title="IranMix Server API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


class ActionRequest(BaseModel):
    # Значения не проверяются: неизвестный action просто ничего не меняет
    action: Any = None
    track: Any = None


def _failure(message, error):
    """Логирование ошибки и ответ 500 без подробностей для клиента."""
    if isinstance(error, StoreUnavailable):
        logger.exception(f"Хранилище недоступно: {message}")
    else:
        logger.exception(message)
    return JSONResponse(status_code=500, content={"error": message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request, exc):
    # Неверный метод на существующем пути тоже считается неизвестным маршрутом
    if exc.status_code in (404, 405):
        return JSONResponse(status_code=404, content={"error": "Endpoint not found"})
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request, exc):
    return JSONResponse(status_code=400, content={"error": "Invalid request body"})


@app.exception_handler(Exception)
async def unhandled_error_handler(request, exc):
    logger.exception("Необработанная ошибка сервера")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.get("/")
def root():
    return {"message": "IranMix Server API", "version": "1.0.0", "status": "running"}


@app.get("/api/health")
def health_check():
    """Проверка состояния сервиса."""
    return {
        "status": "ok",
        "message": "IranMix server is running",
        "timestamp": utc_timestamp(),
    }


@app.get("/api/user/{user_id}")
def get_user(user_id: str, store=Depends(get_store)):
    """Данные пользователя. Для нового пользователя возвращается запись по умолчанию."""
    try:
        return store.get(user_id)
    except Exception as e:
        return _failure("Failed to load user data", e)


@app.post("/api/user/{user_id}")
def save_user(user_id: str, record: dict = Body(...), store=Depends(get_store)):
    """
    Полная перезапись данных пользователя.

    Args:
        user_id: Идентификатор пользователя
        record: Запись пользователя целиком (слияния нет)
    """
    try:
        store.put(user_id, record)
        return {"success": True, "message": "Data saved successfully"}
    except Exception as e:
        return _failure("Failed to save user data", e)


@app.post("/api/user/{user_id}/action")
def log_action(user_id: str, req: ActionRequest, store=Depends(get_store)):
    """
    Логирование действия пользователя.

    Args:
        user_id: Идентификатор пользователя
        req: {action: play | like | skip, track}
    """
    try:
        store.record_action(user_id, req.action, req.track)
        return {"success": True, "message": f"{req.action} logged successfully"}
    except Exception as e:
        return _failure("Failed to log action", e)


@app.get("/api/user/{user_id}/stats")
def get_user_stats(user_id: str, store=Depends(get_store)):
    """Статистика по текущей истории пользователя."""
    try:
        return store.derive_stats(user_id)
    except Exception as e:
        return _failure("Failed to get stats", e)


@app.get("/api/user/{user_id}/lists")
def get_user_lists(user_id: str, store=Depends(get_store)):
    try:
        return store.list_history(user_id)
    except Exception as e:
        return _failure("Failed to get lists", e)


@app.post("/api/generate-playlist")
def generate_playlist(
    payload: dict = Body(...),
    authorization: Optional[str] = Header(None),
    relay=Depends(get_relay),
):
    """
    Генерация плейлиста через Anthropic.

    Ключ берётся из заголовка Authorization: Bearer <key>, иначе из
    ANTHROPIC_API_KEY.
    """
    api_key = (authorization or "").replace("Bearer ", "", 1).strip() or settings.ANTHROPIC_API_KEY
    if not api_key:
        return JSONResponse(status_code=401, content={"error": "API key required"})

    try:
        return relay.generate(payload, api_key)
    except Exception as e:
        logger.exception("Ошибка генерации плейлиста")
        return JSONResponse(status_code=500, content={"error": str(e)})


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)
