"""Error taxonomy shared by the receipt service, the assistant and the CLI."""


class ReceiptwiseError(Exception):
    """Base exception for errors reported to callers as failure envelopes."""

    kind = "error"


class RequestValidationError(ReceiptwiseError):
    """Raised when required input is missing or not acceptable."""

    kind = "validation"


class NotFoundError(ReceiptwiseError):
    """Raised when a receipt lookup by id yields nothing."""

    kind = "not_found"


class ExternalServiceError(ReceiptwiseError):
    """Raised when the extraction or conversational service fails."""

    kind = "external_service"


class SupportLookupError(ReceiptwiseError):
    """Raised when no support provider could answer."""

    kind = "support_lookup"
