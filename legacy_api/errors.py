class PaymentError(Exception):
    """Payment-domain failure carrying a stable code the client can switch on."""

    def __init__(self, message: str, code: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code


class ConfigurationError(PaymentError):
    def __init__(self, message: str):
        super().__init__(message, "CONFIGURATION_ERROR", status_code=500)


class UpstreamError(Exception):
    """A vendor API (payment, LLM, speech) failed or answered non-2xx."""

    def __init__(self, provider: str, message: str, status_code: int = 502):
        super().__init__(message)
        self.provider = provider
        self.message = message
        self.status_code = status_code


USER_MESSAGES = {
    "INVALID_PLAN": "The selected plan is not available. Please choose a different plan.",
    "USER_NOT_FOUND": "User account not found. Please sign in again.",
    "ORDER_CREATION_FAILED": "Unable to create payment order. Please try again.",
    "VERIFICATION_FAILED": "Payment verification failed. If amount was deducted, please contact support.",
    "CONFIGURATION_ERROR": "Payment system is not properly configured. Please contact support.",
}


def user_message(error: PaymentError) -> str:
    return USER_MESSAGES.get(error.code, error.message)
