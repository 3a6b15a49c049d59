import logging
from typing import Iterator, Optional

from fastapi import Request
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from imaginify.errors import MissingConfigurationError
from imaginify.models import Base

logger = logging.getLogger(__name__)


class Database:
    """Owned connection handle. Call ``connect()`` before use and ``dispose()`` when done."""

    def __init__(self, url: Optional[str]):
        self.url = url
        self.engine: Optional[Engine] = None
        self.SessionLocal: Optional[sessionmaker] = None

    @property
    def connected(self) -> bool:
        return self.engine is not None

    def connect(self) -> Engine:
        if self.engine is not None:
            return self.engine
        if not self.url:
            raise MissingConfigurationError("Missing DATABASE_URL environment variable")

        kwargs = {"pool_pre_ping": True}
        if self.url.startswith("sqlite"):
            kwargs = {"connect_args": {"check_same_thread": False}}
            if ":memory:" in self.url or self.url.rstrip("/") == "sqlite:":
                kwargs["poolclass"] = StaticPool

        self.engine = create_engine(self.url, **kwargs)
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, autocommit=False)
        logger.info(f"Database engine created for {self.engine.url.render_as_string(hide_password=True)}")
        return self.engine

    def create_all(self):
        Base.metadata.create_all(bind=self.connect())

    def session(self) -> Session:
        if self.SessionLocal is None:
            self.connect()
        return self.SessionLocal()

    def ping(self) -> bool:
        if self.engine is None:
            return False
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.warning(f"Database ping failed: {e}")
            return False

    def dispose(self):
        if self.engine is not None:
            self.engine.dispose()
        self.engine = None
        self.SessionLocal = None


def get_db(request: Request) -> Iterator[Session]:
    db = request.app.state.db.session()
    try:
        yield db
    finally:
        db.close()
