"""Error taxonomy for the bundle board.

Every error a request can surface derives from BoardError, so the API layer
renders all of them the same way: a single {"error": message} body with the
status code carried by the class.
"""
from typing import Optional


class BoardError(Exception):
    """Base class for board errors."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class MissingTripId(BoardError):
    """A CSV row has no usable Trip ID. The row is skipped, the batch continues."""

    status_code = 400

    def __init__(self, row_number: Optional[int] = None):
        self.row_number = row_number
        if row_number is not None:
            message = f"Row {row_number}: missing Trip ID"
        else:
            message = "missing Trip ID"
        super().__init__(message)


class InvalidBatchShape(BoardError):
    """The request body is not shaped like a batch. Nothing is applied."""

    status_code = 400


class InvalidEdit(BoardError, ValueError):
    """A manual edit names an unknown bucket or assignee."""

    status_code = 400


class InvalidFilter(BoardError, ValueError):
    """A summary request names an unknown filter or lacks its parameters."""

    status_code = 400


class CardNotFoundError(BoardError):
    """The card targeted by a manual edit does not exist."""

    status_code = 404

    def __init__(self, trip_id: str):
        self.trip_id = trip_id
        super().__init__(f"Card not found: {trip_id}")


class PersistenceFailure(BoardError):
    """Writing the card file failed. In-memory state was left unchanged."""

    status_code = 500


class MalformedCachedState(BoardError):
    """A persisted or cached snapshot could not be decoded."""

    status_code = 500
