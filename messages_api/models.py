"""
SQLAlchemy ORM models for database tables.

For Pydantic request/response schemas, see schemas.py.
"""

from sqlalchemy import Column, Integer, Text

from messages_api.storage import Base


class Message(Base):
    """
    Table: messages
    Primary Key: id (assigned by SQLite on insert)
    """
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    message = Column(Text)
