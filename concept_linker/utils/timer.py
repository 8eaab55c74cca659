import functools
import time
import typing as T

from .logger import get_logger

F = T.TypeVar("F", bound=T.Callable[..., T.Any])


def timeit(func: F) -> F:  # type: ignore[misc]
    """Decorator: log execution time of func at DEBUG level on its own module logger."""
    log = get_logger(func.__module__)

    @functools.wraps(func)
    def wrapper(*args: T.Any, **kwargs: T.Any):  # type: ignore[override]
        start = time.perf_counter()
        try:
            return func(*args, **kwargs)
        finally:
            log.debug("%s 耗时 %.3fs", func.__qualname__, time.perf_counter() - start)
    return T.cast(F, wrapper)
