from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from roster_recon.db_models import Base


def _enforce_sqlite_foreign_keys(engine: Engine) -> None:
    # Ledger rows cascade with their run; sqlite ignores FKs unless asked per connection.
    @event.listens_for(engine, "connect")
    def _set_pragma(dbapi_connection, connection_record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def build_engine(database_url: str) -> Engine:
    connect_args: dict[str, object] = {}
    is_sqlite = database_url.startswith("sqlite")
    if is_sqlite:
        # Scheduled runs open sessions from the scheduler executor threads.
        connect_args["check_same_thread"] = False

    engine = create_engine(database_url, connect_args=connect_args)
    if is_sqlite:
        _enforce_sqlite_foreign_keys(engine)
    return engine


def build_session_factory(database_url: str) -> sessionmaker[Session]:
    """Create the ledger tables if needed and return a session factory bound to them.

    Sessions keep loaded attributes after commit so a finished run can still be
    read once its session has closed.
    """
    engine = build_engine(database_url)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
