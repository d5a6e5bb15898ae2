from collections.abc import Generator

from .session import SessionLocalLibrary


def get_library_db() -> Generator:
    db = SessionLocalLibrary()
    try:
        yield db
    finally:
        db.close()
