from typing import Iterator, Optional

from fastapi import Request
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from storefront_orders.core_settings import Settings
from storefront_orders.domain.models import Base


class Database:
    """One engine (and its connection pool) per application.

    Built once in create_app() and handed to request handlers through
    app.state, so no module-level connection is shared between apps.
    """

    def __init__(self, url: Optional[str] = None, engine: Optional[Engine] = None):
        if engine is None:
            engine = create_engine(url, echo=False, pool_pre_ping=True)
        self.engine = engine
        self.session_factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls(url=settings.database_url)

    def session(self) -> Session:
        return self.session_factory()

    def init_models(self) -> None:
        Base.metadata.create_all(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()


def get_db(request: Request) -> Iterator[Session]:
    db = request.app.state.database.session()
    try:
        yield db
    finally:
        db.close()
