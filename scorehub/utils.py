import functools
import inspect
import time

from loguru import logger


def now_ms() -> int:
    """Wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def mask_key(key: str) -> str:
    """Mask an API key for log output."""
    if len(key) > 8:
        return f"{key[:8]}...{key[-4:]}"
    return "****"


def safe_func_wrapper(func):
    """
    A decorator that logs job entry, exit, and exceptions.

    Features:
    - Prints function name and parameters before execution
    - Logs the exception with its type and re-raises it unchanged
    - Prints success message after successful execution
    - Works for both plain functions and coroutine functions
    """

    def _describe(args, kwargs) -> dict:
        sig = inspect.signature(func)
        bound_args = sig.bind(*args, **kwargs)
        bound_args.apply_defaults()
        params = dict(bound_args.arguments)
        params.pop("self", None)
        return params

    if inspect.iscoroutinefunction(func):

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            func_name = func.__name__
            logger.info(f"Entering {func_name} with params: {_describe(args, kwargs)}")
            try:
                result = await func(*args, **kwargs)
                logger.info(f"{func_name} succeeded. Exiting..")
                return result
            except Exception as e:
                logger.error(f"{func_name} raised {type(e).__name__}: {e}")
                raise

        return async_wrapper

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        func_name = func.__name__
        logger.info(f"Entering {func_name} with params: {_describe(args, kwargs)}")
        try:
            result = func(*args, **kwargs)
            logger.info(f"{func_name} succeeded. Exiting..")
            return result
        except Exception as e:
            logger.error(f"{func_name} raised {type(e).__name__}: {e}")
            raise

    return wrapper
