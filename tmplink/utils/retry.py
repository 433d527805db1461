import logging
import random
import time
from functools import wraps
from typing import Any, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry(
    retries: int = 3,
    delay: float = 0.1,
    backoff: float = 2.0,
    max_delay: float = 5.0,
    jitter: float = 0.1,
    catch_exceptions: type[Exception] | tuple[type[Exception], ...] = Exception,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    A decorator for retrying a function with exponential backoff.

    Args:
        retries: The maximum number of retries.
        delay: The initial delay between retries in seconds.
        backoff: The multiplier for the delay for each subsequent retry.
        max_delay: The maximum delay between retries.
        jitter: A factor to add random jitter to the delay.
        catch_exceptions: The exception or tuple of exceptions to catch and retry on.
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            current_delay = delay
            for attempt in range(retries + 1):
                try:
                    return func(*args, **kwargs)
                except catch_exceptions as e:
                    if attempt == retries:
                        logger.error(
                            f"Function '{func.__name__}' failed after {retries + 1} attempts. "
                            f"Last error: {e}"
                        )
                        raise

                    logger.warning(
                        f"Attempt {attempt + 1}/{retries + 1} for '{func.__name__}' failed. "
                        f"Retrying in {current_delay:.2f}s. Error: {e}"
                    )

                    jitter_amount = current_delay * jitter * random.uniform(-1, 1)
                    time.sleep(max(0.0, current_delay + jitter_amount))

                    current_delay = min(current_delay * backoff, max_delay)

            raise RuntimeError("Retry loop exited unexpectedly")

        return wrapper

    return decorator
