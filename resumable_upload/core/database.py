"""
Database connection and session management for the hash index
"""
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker


class Base(DeclarativeBase):
    """Base class for all models"""
    pass


def create_db_engine(database_url: str) -> Engine:
    """Create a sync engine; SQLite connections are shared across worker threads"""
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": 30}
    return create_engine(database_url, echo=False, pool_pre_ping=True, connect_args=connect_args)


def create_session_maker(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
