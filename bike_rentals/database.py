"""
Database engine, session factory and declarative base
"""
from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker
from bike_rentals.config import settings


def make_engine(database_url: str, **kwargs):
    """
    Build an engine for ``database_url``.

    On SQLite every transaction starts with ``BEGIN IMMEDIATE``, taking the
    write lock before the first read. SQLite ignores ``SELECT ... FOR UPDATE``,
    so this is what keeps an overlap check and the insert that follows it
    atomic against a second writer.
    """
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, future=True, **kwargs)

    connect_args = kwargs.pop("connect_args", {})
    connect_args.setdefault("check_same_thread", False)
    engine = create_engine(database_url, connect_args=connect_args, future=True, **kwargs)

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        # pysqlite would otherwise defer BEGIN until the first write
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


engine = make_engine(settings.database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """FastAPI dependency yielding a request-scoped session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create all tables"""
    # Register models on the metadata before create_all
    import bike_rentals.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
