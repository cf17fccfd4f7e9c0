# Persistence layer
from app.db.base import Base
from app.db.session import create_session_factory, init_db

__all__ = ["Base", "create_session_factory", "init_db"]
