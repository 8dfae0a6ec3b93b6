"""Domain errors for the Peripherals Store API.

Every failure a caller can see maps to exactly one ``kind``. The HTTP layer
turns the kind into a status code; storage failures that are not one of these
errors are reported as an internal error.
"""


class StoreError(Exception):
    """Base exception for all domain errors."""

    kind = "internal"
    status_code = 500

    def __init__(self, message: str = "internal error"):
        self.message = message
        super().__init__(message)


class InvalidReferenceError(StoreError):
    """Raised for a malformed or unresolvable entity id."""

    kind = "invalid_reference"
    status_code = 400

    def __init__(self, message: str = "invalid id"):
        super().__init__(message)


class InvalidProductError(InvalidReferenceError):
    def __init__(self, product_id: str | None = None):
        self.product_id = product_id
        super().__init__("invalid product")


class InvalidInputError(StoreError):
    """Raised when a field fails validation (empty name, bad price, ...)."""

    kind = "invalid_input"
    status_code = 400


class NotFoundError(StoreError):
    kind = "not_found"
    status_code = 404

    def __init__(self, entity: str = "resource"):
        self.entity = entity
        super().__init__(f"{entity} not found")


class ConflictError(StoreError):
    """Raised when an operation collides with existing state."""

    kind = "conflict"
    status_code = 409


class ForbiddenError(StoreError):
    kind = "forbidden"
    status_code = 403

    def __init__(self, message: str = "forbidden"):
        super().__init__(message)


class UnauthorizedError(StoreError):
    kind = "unauthorized"
    status_code = 401

    def __init__(self, message: str = "unauthorized"):
        super().__init__(message)


class InvalidRangeError(StoreError):
    """Raised when a statistics window is malformed."""

    kind = "invalid_range"
    status_code = 400


class InvalidDateRangeError(InvalidRangeError):
    def __init__(self):
        super().__init__("invalid date range")


class InvalidYearError(InvalidRangeError):
    def __init__(self, year=None):
        self.year = year
        super().__init__("invalid year")


class InvalidDateFormatError(InvalidRangeError):
    def __init__(self, value: str | None = None):
        self.value = value
        super().__init__("invalid start or end date format, use YYYY-MM-DD")
