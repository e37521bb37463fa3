"""Domain errors raised by services and mapped to HTTP responses in main."""


class ProcurementError(Exception):
    """An external service (completion model, SMTP, IMAP) failed; ``public_message`` is what callers see."""
    status_code = 500
    public_message = "Internal server error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.public_message)


class AIServiceError(ProcurementError):
    public_message = "AI service request failed"


class AIUnavailableError(AIServiceError):
    """No completion endpoint configured."""


class MailTransportError(ProcurementError):
    public_message = "Failed to send RFP emails"


class MailboxError(ProcurementError):
    public_message = "Server error while checking emails"
