from __future__ import annotations

GENERATION_FAILED_MESSAGE = "Failed to generate organization suggestions"


class OrganizeError(RuntimeError):
  """Whole-request generation failure. The cause is chained, never surfaced."""

  def __init__(self, message: str = GENERATION_FAILED_MESSAGE) -> None:
    super().__init__(message)
    self.message = message


class ReviewStateError(RuntimeError):
  pass
