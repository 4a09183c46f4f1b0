"""
Exceptions and common error handling utilities for the BGG catalog package.

Exception hierarchy:
    CatalogError (base)
    ├── TransportError
    │   ├── RateLimited
    │   └── HttpError
    ├── MalformedWireData
    ├── ReconciliationConflict
    ├── RollupCheckFailure
    ├── DocumentNotFound
    ├── DuplicateDocument
    └── ImportFailed
"""

import logging
from typing import Optional, Any, Callable
from functools import wraps

logger = logging.getLogger(__name__)


class CatalogError(Exception):
    """Base class for errors raised by the ingestion pipeline."""


class TransportError(CatalogError):
    """A fetch against the catalog service failed."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class RateLimited(TransportError):
    """The catalog service throttled us (HTTP 429)."""

    def __init__(self, url: Optional[str] = None, retry_after: Optional[float] = None):
        super().__init__(f"Rate limited by catalog service: {url}", url)
        self.retry_after = retry_after


class HttpError(TransportError):
    """The catalog service answered with a non-success status."""

    def __init__(self, status: int, url: Optional[str] = None):
        super().__init__(f"HTTP {status} from catalog service: {url}", url)
        self.status = status

    @property
    def retryable(self) -> bool:
        return self.status >= 500 or self.status == 202


class MalformedWireData(CatalogError):
    """The payload could not be parsed as catalog markup at all."""


class ReconciliationConflict(CatalogError):
    """Creating an entity raced with a concurrent writer."""

    def __init__(self, collection: str, name: str, original_exception: Optional[Exception] = None):
        super().__init__(f"Conflict creating {collection} '{name}': {original_exception}")
        self.collection = collection
        self.name = name
        if original_exception:
            self.__cause__ = original_exception


class RollupCheckFailure(CatalogError):
    """Inspecting a parent's children during rollup failed."""

    def __init__(self, parent, original_exception: Optional[Exception] = None):
        super().__init__(f"Rollup check failed for {parent}: {original_exception}")
        self.parent = parent
        if original_exception:
            self.__cause__ = original_exception


class DocumentNotFound(CatalogError):
    """No document with the requested id exists in the collection."""

    def __init__(self, collection: str, doc_id: Any):
        super().__init__(f"{collection} with ID {doc_id} not found")
        self.collection = collection
        self.doc_id = doc_id


class DuplicateDocument(CatalogError):
    """A create violated a uniqueness constraint."""


class ImportFailed(CatalogError):
    """The primary record of an import could not be fetched, mapped or written."""


def handle_errors(default_return: Any = None, log_error: bool = True):
    """
    Decorator to handle common exceptions and provide consistent error logging.

    Args:
        default_return: Value to return on error
        log_error: Whether to log the error
    """
    def decorator(func: Callable):
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                if log_error:
                    logger.error(f"Error in {func.__name__}: {e}")
                return default_return
        return wrapper
    return decorator


def safe_execute(func: Callable, *args, default_return: Any = None,
                 error_msg: Optional[str] = None, **kwargs) -> Any:
    """
    Safely execute a function with error handling.

    Args:
        func: Function to execute
        *args: Arguments for the function
        default_return: Value to return on error
        error_msg: Custom error message
        **kwargs: Keyword arguments for the function

    Returns:
        Function result or default_return on error
    """
    try:
        return func(*args, **kwargs)
    except Exception as e:
        if error_msg:
            logger.error(f"{error_msg}: {e}")
        else:
            logger.error(f"Error in {getattr(func, '__name__', func)}: {e}")
        return default_return
