"""
Error taxonomy for batch registration and verification.

Errors are raised inside the domain and codec layers and converted into
outcome objects at the service boundary, so no public operation fails
with an unhandled exception.
"""


class MedVerifyError(Exception):
    """Base class for all domain errors."""

    code = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(MedVerifyError):
    """A referenced batch or manufacturer does not exist."""

    code = "not-found"


class InvalidInputError(MedVerifyError):
    """A required field is missing or malformed."""

    code = "invalid-input"


class LockedError(MedVerifyError):
    """The batch is inside its lockout window."""

    code = "locked"


class InvalidCodeError(MedVerifyError):
    """The submitted one-time code does not match."""

    code = "invalid-code"


class ProofMismatchError(MedVerifyError):
    """Recomputed proof differs from the stored batch hash."""

    code = "proof-mismatch"


class ImportParseError(MedVerifyError):
    """An imported or persisted document could not be parsed."""

    code = "import-parse-error"
