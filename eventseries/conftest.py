# eventseries/conftest.py
import os
import sys
import tempfile

# Добавляем корень репозитория в PYTHONPATH, чтобы 'import eventseries...' работал
sys.path.insert(0, str(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

# Тестовое окружение: файловый SQLite через aiosqlite и eager Celery
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault(
    "DATABASE_URL",
    "sqlite+aiosqlite:///" + os.path.join(tempfile.gettempdir(), f"eventseries-test-{os.getpid()}.db"),
)
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")

# Обязательно после установки ENVIRONMENT подключаем Celery-конфиг eager
from eventseries.workers.tasks import celery_app  # noqa: E402

celery_app.conf.task_always_eager = True
celery_app.conf.task_eager_propagates = True
