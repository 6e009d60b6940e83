"""
Utility functions for EduStream Backend
"""

import functools
import logging
import re
import time

from core.exceptions import ProviderUnavailable, StorageUnavailable

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (ProviderUnavailable, StorageUnavailable)


def with_retry(max_attempts=3, base=2, retry_on=RETRYABLE_ERRORS, sleep=time.sleep, on_retry=None):
    """
    Retry a callable on transient failures with exponential backoff.

    Waits ``base ** attempt`` seconds between attempts. Only exceptions listed
    in ``retry_on`` are retried; anything else propagates immediately. After
    ``max_attempts`` the last error is raised unchanged.

    Usable as a decorator or called directly::

        with_retry(max_attempts=3)(client.get_asset)(asset_id)
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                attempt += 1
                try:
                    return func(*args, **kwargs)
                except retry_on as e:
                    if attempt >= max_attempts:
                        raise
                    wait = base ** attempt
                    logger.warning(
                        f"{getattr(func, '__name__', 'call')} failed on attempt {attempt}/{max_attempts}: "
                        f"{e}; retrying in {wait}s"
                    )
                    if on_retry:
                        on_retry(attempt, e)
                    sleep(wait)
        return wrapper
    return decorator


def get_client_ip(request):
    """
    Get client IP address from request
    """
    if request is None:
        return None
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        ip = x_forwarded_for.split(',')[0].strip()
    else:
        ip = request.META.get('REMOTE_ADDR')
    return ip or None


def get_user_agent(request):
    """
    Get user agent from request
    """
    if request is None:
        return ''
    return request.META.get('HTTP_USER_AGENT', '')


def sanitize_filename(filename, max_length=255):
    """
    Sanitize filename for use inside an object key
    """
    if not filename:
        return 'unnamed_file'

    filename = re.sub(r'[^a-zA-Z0-9._-]', '_', filename)
    while '..' in filename:
        filename = filename.replace('..', '_')

    filename = filename[:max_length]
    return filename or 'unnamed_file'


def get_file_extension(filename):
    """
    Get lower-case file extension from filename
    """
    if not filename or '.' not in filename:
        return ''

    return filename.rsplit('.', 1)[-1].lower()


def format_file_size(bytes_size):
    """
    Format file size in bytes to human-readable format
    """
    if bytes_size == 0:
        return "0 B"

    size_names = ["B", "KB", "MB", "GB", "TB"]
    i = 0
    size = float(bytes_size)

    while size >= 1024.0 and i < len(size_names) - 1:
        size /= 1024.0
        i += 1

    return f"{size:.1f} {size_names[i]}"


def chunked(items, size):
    """
    Split a list into consecutive chunks of ``size`` items
    """
    items = list(items)
    return [items[i:i + size] for i in range(0, len(items), size)]
