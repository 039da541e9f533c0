import logging
from typing import Generator, List

from fastapi import Request
from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session, declarative_base

logger = logging.getLogger(__name__)

# Base class for SQLAlchemy models
Base = declarative_base()


class Store:
    """
    The long-lived database handle shared by every request.

    Built once per application and injected through ``app.state.store``;
    concurrent access is left to the engine's pool and SQLite's own locking.
    """

    def __init__(self, database_url: str):
        self.database_url = database_url

        # check_same_thread=False lets pooled SQLite connections move between
        # FastAPI's worker threads
        connect_args = {}
        if database_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False

        self.engine = create_engine(
            database_url,
            connect_args=connect_args,
            echo=False,
        )
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def init_schema(self) -> None:
        """
        Create the messages table if it does not exist yet.
        Called during application startup; failures are fatal.
        """
        logger.debug(f"Initializing database with URL: {self.database_url}")
        try:
            # Import models to register them with Base.metadata
            from messages_api.models import Message  # noqa: F401

            Base.metadata.create_all(bind=self.engine)
            logger.info("Database initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise

    def session(self) -> Session:
        return self.SessionLocal()

    def check_health(self) -> bool:
        """
        Check if the database is reachable and schema is applied.

        Returns:
            True if DB is healthy and the messages table exists, False otherwise.
        """
        try:
            with self.SessionLocal() as db:
                db.execute(text("SELECT 1"))
                result = db.execute(text(
                    "SELECT COUNT(*) FROM sqlite_master WHERE type='table' AND name='messages'"
                )).scalar()
                if result == 0:
                    logger.error("Database schema not applied: 'messages' table not found")
                    return False
            return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False

    def dispose(self) -> None:
        self.engine.dispose()


def get_db(request: Request) -> Generator[Session, None, None]:
    """
    Dependency to get database session from the application's store.
    Yields a session and ensures it's closed after use.
    """
    db = request.app.state.store.session()
    try:
        yield db
    finally:
        db.close()


# =============================================================================
# Message Repository Functions
# =============================================================================

def get_all_messages(db: Session) -> List:
    """Return every stored message in insertion order."""
    from messages_api.models import Message

    messages = db.query(Message).order_by(Message.id.asc()).all()
    logger.debug(f"Retrieved {len(messages)} messages")
    return messages


def insert_message(db: Session, message_text: str) -> int:
    """
    Insert a new message row.

    Returns:
        The id assigned by the store.
    """
    from messages_api.models import Message

    try:
        message = Message(message=message_text)
        db.add(message)
        # The id is known once the INSERT is flushed; reading it after commit
        # would reload the row, which a concurrent DELETE may already have removed.
        db.flush()
        message_id = message.id
        db.commit()
        logger.info(f"Message created: id={message_id}")
        return message_id
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to create message: {e}")
        raise


def update_message_text(db: Session, message_id: int, message_text: str) -> int:
    """
    Replace the text of the message with the given id.

    Returns:
        Number of rows affected (0 when no such id exists).
    """
    from messages_api.models import Message

    try:
        rows = (
            db.query(Message)
            .filter(Message.id == message_id)
            .update({Message.message: message_text}, synchronize_session=False)
        )
        db.commit()
        logger.info(f"Message updated: id={message_id}, rows_affected={rows}")
        return rows
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to update message {message_id}: {e}")
        raise


def delete_message_by_id(db: Session, message_id: int) -> int:
    """
    Delete the message with the given id.

    Returns:
        Number of rows affected (0 when no such id exists).
    """
    from messages_api.models import Message

    try:
        rows = (
            db.query(Message)
            .filter(Message.id == message_id)
            .delete(synchronize_session=False)
        )
        db.commit()
        logger.info(f"Message deleted: id={message_id}, rows_affected={rows}")
        return rows
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to delete message {message_id}: {e}")
        raise
