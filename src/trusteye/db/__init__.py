from __future__ import annotations

from trusteye.db.session import create_db_engine, init_db, make_session_factory, session_scope

__all__ = ["create_db_engine", "init_db", "make_session_factory", "session_scope"]
