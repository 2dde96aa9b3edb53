"""Errors raised by the payment provider adapters."""


class PaymentProviderError(Exception):
    """A payment provider call failed or returned an unusable response.

    ``body`` carries the raw provider response (when there was one) so the
    failure can be diagnosed from logs.
    """

    def __init__(self, message: str, *, status_code: int | None = None, body: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class PaymentProviderNotConfiguredError(PaymentProviderError):
    """Required provider credentials are missing from settings."""
