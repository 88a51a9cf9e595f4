"""
Domain error taxonomy.

Every error raised by the services derives from DocIntakeError and carries the
HTTP status the API layer reports it with.
"""


class DocIntakeError(Exception):
    """Base class for document intake errors."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(DocIntakeError):
    """Bad input. Rejected immediately, never retried."""

    status_code = 400


class NotFoundError(ValidationError):
    """Unknown document, checklist item, alert or client record."""

    status_code = 404


class ConflictError(DocIntakeError):
    """Request conflicts with the current state of a record."""

    status_code = 409


class AlreadyProcessingError(ConflictError):
    """A processing run already owns this document."""

    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"Document {document_id} is already being processed")


class ConsistencyError(DocIntakeError):
    """Operation would break a cross-record invariant (e.g. linking an unprocessed document)."""

    status_code = 409


class ProviderError(DocIntakeError):
    """OCR/AI backend or storage failure. Terminal for the stage."""

    status_code = 502


class TransientProviderError(ProviderError):
    """Timeout, rate limit or 5xx from a provider. Retried by the retry policy."""


class StageTimeoutError(ProviderError):
    """A stage did not finish within the stage timeout."""

    def __init__(self, stage: str, timeout: float):
        self.stage = stage
        self.timeout = timeout
        super().__init__(f"Stage '{stage}' timed out after {timeout:g}s")


class LeaseLostError(ConflictError):
    """The run's lease on a document was taken over; its writes are discarded."""

    def __init__(self, document_id: str, owner: str):
        self.document_id = document_id
        self.owner = owner
        super().__init__(f"Run {owner} no longer owns document {document_id}")
