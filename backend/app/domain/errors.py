class VerificationError(RuntimeError):
    pass


class InvalidSignature(VerificationError):
    pass


class StoreWriteError(RuntimeError):
    pass


class BillingProviderError(RuntimeError):
    error_code: str = "billing_provider_error"

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class BillingProviderNotFound(BillingProviderError):
    error_code = "billing_provider_not_found"


class ProviderPayloadError(BillingProviderError):
    """Provider object is missing a field the reconciliation relies on."""

    error_code = "billing_provider_payload_invalid"


class PortalUnavailable(RuntimeError):
    error_code: str = "portal_unavailable"
    status_code: int = 400


class NoActiveSubscription(PortalUnavailable):
    error_code = "no_active_subscription"
    status_code = 404


class ManualSubscription(PortalUnavailable):
    error_code = "manual_subscription"
    status_code = 400
