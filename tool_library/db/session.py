import os

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker


def _require_env(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


TOOL_LIBRARY_DB_URL = _require_env("TOOL_LIBRARY_DB_URL")

engine_library = create_engine(
    TOOL_LIBRARY_DB_URL,
    pool_pre_ping=True,
)

SessionLocalLibrary = sessionmaker(
    bind=engine_library,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
)
