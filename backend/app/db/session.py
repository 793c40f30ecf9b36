from sqlmodel import SQLModel, create_engine
from app.core.config import settings


def make_engine(url: str):
    """Создать engine; для SQLite - ожидание блокировки и доступ из разных потоков"""
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": 30}
    return create_engine(url, connect_args=connect_args)


engine = make_engine(settings.DATABASE_URL)


def create_db_and_tables(bind=None):
    """Создание всех таблиц"""
    import app.models  # noqa: F401 - регистрация моделей в metadata

    SQLModel.metadata.create_all(bind or engine)
