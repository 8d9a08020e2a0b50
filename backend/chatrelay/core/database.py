from sqlmodel import SQLModel, create_engine

from chatrelay.core.config import settings


def _database_url() -> str:
    return settings.database_url or f"sqlite:///{settings.db_path}"


_url = _database_url()

engine = create_engine(
    _url,
    echo=settings.debug,
    connect_args={"check_same_thread": False} if _url.startswith("sqlite") else {},
)


def init_db() -> None:
    import chatrelay.models.conversation  # noqa: F401 - ensure models are registered
    SQLModel.metadata.create_all(engine)
