import time
from functools import wraps
from typing import Callable, Optional, TypeVar

import structlog

from core.config import settings
from ledger.errors import CodeGenerationExhaustedError, StoreError


logger = structlog.get_logger(__name__)

T = TypeVar("T")


def with_store_retry(
    attempts: Optional[int] = None,
    delay: Optional[float] = None,
    backoff: float = 2.0,
    sleep: Callable[[float], None] = time.sleep,
):
    """Retry transient store failures with exponential backoff.

    Only ``StoreError`` is retried; validation, not-found and conflict errors
    pass straight through. ``CodeGenerationExhaustedError`` is final since
    another round would just burn the same attempts again.
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            total = attempts or settings.STORE_RETRY_ATTEMPTS
            current_delay = settings.STORE_RETRY_DELAY_SECONDS if delay is None else delay

            for attempt in range(1, total + 1):
                try:
                    return func(*args, **kwargs)
                except CodeGenerationExhaustedError:
                    raise
                except StoreError as e:
                    if attempt >= total:
                        logger.error(
                            "Store call failed, retries exhausted",
                            operation=func.__name__,
                            attempts=total,
                            error=str(e),
                        )
                        raise
                    logger.warning(
                        "Store call failed, retrying",
                        operation=func.__name__,
                        attempt=attempt,
                        attempts=total,
                        delay=current_delay,
                        error=str(e),
                    )
                    sleep(current_delay)
                    current_delay *= backoff

        return wrapper

    return decorator


def call_with_store_retry(func: Callable[..., T], *args, **kwargs) -> T:
    return with_store_retry()(func)(*args, **kwargs)
