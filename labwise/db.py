from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from starlette.requests import Request


Base = declarative_base()


def create_db_engine(database_url: str) -> Engine:
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            future=True,
            connect_args={"check_same_thread": False},
        )
    # Configure connection pool for better performance
    return create_engine(
        database_url,
        future=True,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        pool_recycle=3600,  # Recycle connections after 1 hour
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    # IMPORTANT: do not use scoped_session with async frameworks; create a fresh Session per request
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def get_db(request: Request):
    """
    Yield a Session from the factory the process entry point attached to the app.
    The factory is built once in create_app() and lives on app.state.
    """
    db: Session = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()
