from __future__ import annotations


class TaskbotError(Exception):
  status_code = 500

  def __init__(self, message: str) -> None:
    super().__init__(message)
    self.message = message


class ValidationError(TaskbotError):
  """Malformed input; raised before anything is written."""

  status_code = 400


class NotFoundError(TaskbotError):
  """Unknown id, or an id owned by another user."""

  status_code = 404


class ConflictError(TaskbotError):
  """Attempt to edit or delete a reserved category."""

  status_code = 403


class DeliveryError(Exception):
  """Messaging channel could not deliver a message."""

  def __init__(self, message: str, *, status_code: int | None = None) -> None:
    super().__init__(message)
    self.message = message
    self.status_code = status_code
