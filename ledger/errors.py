class LedgerServiceError(Exception):
    pass


# Bad input, rejected before anything is written.
class ValidationError(LedgerServiceError):
    pass


class InvalidAmountError(ValidationError):
    pass


class UnknownSourceError(ValidationError):
    pass


class UnknownStatusError(ValidationError):
    pass


class InvalidExpiryError(ValidationError):
    pass


class InvalidCodeError(ValidationError):
    pass


class InvalidDateRangeError(ValidationError):
    pass


class NotFoundError(LedgerServiceError):
    pass


class CouponNotFoundError(NotFoundError):
    pass


# The precondition of the operation no longer holds. Not retryable.
class ConflictError(LedgerServiceError):
    pass


class AlreadyUsedError(ConflictError):
    pass


class CouponExpiredError(ConflictError):
    pass


class RedemptionCapReachedError(ConflictError):
    pass


class DuplicateCodeError(ConflictError):
    pass


# Storage could not serve the call. Retryable with backoff.
class StoreError(LedgerServiceError):
    pass


class StoreTimeoutError(StoreError):
    pass


class ConcurrentModificationError(StoreError):
    pass


class CodeGenerationExhaustedError(StoreError):
    pass
