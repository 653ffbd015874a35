"""Database package for the call-to-account resolution engine."""
from db.connection import (
    dispose_engine,
    get_engine,
    get_session_factory,
    make_session_factory,
)

__all__ = [
    "get_engine",
    "get_session_factory",
    "make_session_factory",
    "dispose_engine",
]
