"""
Message operations behind the /messages route.

Each operation takes the raw request data plus a database session and returns
an Outcome: the response body, the result counted in
message_operations_total, and for update/delete the number of rows affected.
Error outcomes are raised as OperationError. Nothing here touches the Request
object, so tests can call the operations directly with a session.
"""

import logging
import re
from typing import Any, NamedTuple, Optional

from fastapi import HTTPException, status
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from messages_api.metrics import record_message_operation
from messages_api.schemas import MessageRecord
from messages_api.storage import (
    get_all_messages,
    insert_message,
    update_message_text,
    delete_message_by_id,
)

logger = logging.getLogger(__name__)


BODY_READ_ERROR = "Error reading request body"
BODY_PARSE_ERROR = "Error parsing request body"
INVALID_ID_ERROR = "Invalid ID"
NOT_FOUND_ERROR = "Message not found"
OPAQUE_STORE_ERROR = "Internal server error"

# SQLite INTEGER is a signed 64-bit value
MIN_ID = -(2 ** 63)
MAX_ID = 2 ** 63 - 1

_ID_PATTERN = re.compile(r"[+-]?[0-9]+")


class Outcome(NamedTuple):
    body: Any
    result: str
    rows_affected: Optional[int] = None


class OperationError(HTTPException):
    """An HTTPException that remembers which operation failed and how."""

    def __init__(self, operation: str, result: str, status_code: int, detail: str):
        super().__init__(status_code=status_code, detail=detail)
        self.operation = operation
        self.result = result


def fail(operation: str, result: str, status_code: int, detail: str) -> OperationError:
    record_message_operation(operation, result)
    return OperationError(operation, result, status_code, detail)


def succeed(operation: str, body: Any, rows_affected: Optional[int] = None) -> Outcome:
    result = "noop" if rows_affected == 0 else "ok"
    record_message_operation(operation, result)
    return Outcome(body, result, rows_affected)


def decode_message(raw_body: bytes, operation: str) -> MessageRecord:
    """Decode a JSON request body into a MessageRecord or fail with 400."""
    try:
        record = MessageRecord.model_validate_json(raw_body)
    except ValidationError as e:
        logger.warning(f"{operation}: could not decode body: {e.errors()[0]['msg']}")
        raise fail(operation, "bad_request", status.HTTP_400_BAD_REQUEST, BODY_PARSE_ERROR)

    if not MIN_ID <= record.id <= MAX_ID:
        logger.warning(f"{operation}: id out of range: {record.id}")
        raise fail(operation, "bad_request", status.HTTP_400_BAD_REQUEST, BODY_PARSE_ERROR)

    return record


def parse_message_id(raw_id: Optional[str]) -> int:
    """
    Parse the ``id`` query parameter.

    Accepts an optional sign followed by ASCII digits, within the 64-bit range.
    """
    if raw_id is None or not _ID_PATTERN.fullmatch(raw_id):
        raise ValueError(f"invalid id: {raw_id!r}")

    message_id = int(raw_id)
    if not MIN_ID <= message_id <= MAX_ID:
        raise ValueError(f"id out of range: {raw_id}")
    return message_id


def store_failure(operation: str, error: SQLAlchemyError, expose_store_errors: bool) -> OperationError:
    """Map a store error to a 500, carrying the driver's own error text if allowed."""
    raw_text = str(getattr(error, "orig", None) or error)
    logger.error(f"{operation}: store error: {raw_text}")

    detail = raw_text if expose_store_errors else OPAQUE_STORE_ERROR
    return fail(operation, "error", status.HTTP_500_INTERNAL_SERVER_ERROR, detail)


def not_found(operation: str, message_id: int) -> OperationError:
    logger.info(f"{operation}: no message with id={message_id}")
    return fail(operation, "not_found", status.HTTP_404_NOT_FOUND, NOT_FOUND_ERROR)


# =============================================================================
# Operations
# =============================================================================

def list_messages(db: Session, expose_store_errors: bool = True) -> Outcome:
    try:
        rows = get_all_messages(db)
    except SQLAlchemyError as e:
        raise store_failure("list", e, expose_store_errors)

    return succeed("list", [MessageRecord(id=row.id, message=row.message or "") for row in rows])


def create_message(raw_body: bytes, db: Session, expose_store_errors: bool = True) -> Outcome:
    """
    Insert the decoded message; the body is the record with the store-assigned id.

    Any id in the request body is ignored.
    """
    record = decode_message(raw_body, "create")

    try:
        message_id = insert_message(db, record.message)
    except SQLAlchemyError as e:
        raise store_failure("create", e, expose_store_errors)

    return succeed("create", MessageRecord(id=message_id, message=record.message))


def update_message(
    raw_body: bytes,
    db: Session,
    expose_store_errors: bool = True,
    report_missing_rows: bool = False,
) -> Outcome:
    """
    Replace the text of the message named by the body's id.

    Unless report_missing_rows is set, an id that matches nothing still
    answers with the submitted record (result "noop", zero rows affected).
    """
    record = decode_message(raw_body, "update")

    try:
        rows = update_message_text(db, record.id, record.message)
    except SQLAlchemyError as e:
        raise store_failure("update", e, expose_store_errors)

    if rows == 0 and report_missing_rows:
        raise not_found("update", record.id)
    return succeed("update", record, rows_affected=rows)


def delete_message(
    raw_id: Optional[str],
    db: Session,
    expose_store_errors: bool = True,
    report_missing_rows: bool = False,
) -> Outcome:
    """
    Delete the message named by the ``id`` query parameter.

    The body is {"id": id, "message": ""} whether or not a row was removed,
    unless report_missing_rows is set.
    """
    try:
        message_id = parse_message_id(raw_id)
    except ValueError as e:
        logger.warning(f"delete: {e}")
        raise fail("delete", "bad_request", status.HTTP_400_BAD_REQUEST, INVALID_ID_ERROR)

    try:
        rows = delete_message_by_id(db, message_id)
    except SQLAlchemyError as e:
        raise store_failure("delete", e, expose_store_errors)

    if rows == 0 and report_missing_rows:
        raise not_found("delete", message_id)
    return succeed("delete", MessageRecord(id=message_id), rows_affected=rows)
