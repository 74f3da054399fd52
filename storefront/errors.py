class StorefrontError(Exception):
    """Base error for the payment pipeline. Carries the HTTP status it maps to."""

    status_code = 500

    def __init__(self, message: str, details=None):
        super().__init__(message)
        self.message = message
        self.details = details

    @property
    def code(self) -> str:
        return type(self).__name__


class ValidationError(StorefrontError):
    status_code = 400


class InvalidPayload(ValidationError):
    pass


class MissingResourceId(ValidationError):
    pass


class CouldNotResolveOrder(ValidationError):
    pass


class InvalidOrderData(ValidationError):
    pass


class OrderAlreadyPaid(ValidationError):
    pass


class ConfigurationError(StorefrontError):
    status_code = 500


class NotFoundError(StorefrontError):
    status_code = 404


class OrderNotFound(NotFoundError):
    def __init__(self, order_id: str):
        super().__init__(f"Order {order_id} not found")
        self.order_id = order_id


class UpstreamError(StorefrontError):
    status_code = 500


class PersistenceError(StorefrontError):
    status_code = 500
