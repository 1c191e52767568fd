"""
Domain error taxonomy.

Parse and transport errors are recovered where they happen; the rest are
surfaced to the caller and mapped to HTTP responses in main.create_app().
"""
from typing import Optional


class LabwiseError(Exception):
    """Base class for domain errors."""


class ParseError(LabwiseError):
    """A calibration date, periodicity or derived identifier could not be parsed."""

    def __init__(self, message: str, value: Optional[object] = None):
        super().__init__(message)
        self.value = value


class InvalidTransition(LabwiseError):
    def __init__(self, current: str, requested: str, message: Optional[str] = None):
        super().__init__(message or f"Cannot move task from '{current}' to '{requested}'")
        self.current = current
        self.requested = requested


class MissingCompletionDate(InvalidTransition):
    """Staff completed a task without saying when the work was done."""

    def __init__(self, current: str):
        LabwiseError.__init__(self, "A completion date is required to complete a task")
        self.current = current
        self.requested = "completed"


class NotFound(LabwiseError):
    def __init__(self, entity: str, key: object):
        super().__init__(f"{entity} not found")
        self.entity = entity
        self.key = key


class DuplicateRuleKind(LabwiseError):
    def __init__(self, kind: str):
        super().__init__(
            f'A notification type with an identifier similar to "{kind}" already exists. '
            "Please choose a different title."
        )
        self.kind = kind


class DuplicateInternalCode(LabwiseError):
    def __init__(self, internal_code: str):
        super().__init__(f'Equipment with internal code "{internal_code}" already exists')
        self.internal_code = internal_code


class TransportError(LabwiseError):
    """
    Mail transport failure for a single recipient.
    Carried as a value inside SendResult, never raised across the dispatcher.
    """

    def __init__(self, message: str, recipient: Optional[str] = None):
        super().__init__(message)
        self.recipient = recipient


class DuplicateEmail(LabwiseError):
    def __init__(self, email: str):
        super().__init__(f'A user with email "{email}" already exists')
        self.email = email
