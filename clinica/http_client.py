"""HTTP session with retry and connection pooling.

Purpose: Centralize HTTP configuration for every call to the clinic backend.

Pattern: requests.Session with a urllib3 retry adapter and tenacity retries
with exponential backoff on reads.

Only GET is retried. Writes (create appointment, create invoice, payment
reconciliation, deletes) are sent exactly once: re-posting an invoice after a
timeout could bill the patient twice.
"""
import logging

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception,
    before_sleep_log
)

from clinica import config

logger = logging.getLogger(__name__)

RETRY_STATUS_CODES = [429, 500, 502, 503, 504]


def is_retryable(exc: BaseException) -> bool:
    """Transport errors and 429/5xx responses are worth another read attempt."""
    if isinstance(exc, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)):
        return True
    if isinstance(exc, requests.exceptions.HTTPError):
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None)
        return status is None or status in RETRY_STATUS_CODES
    return False


def create_http_session(
    max_retries: int = config.HTTP_MAX_RETRIES,
    timeout: int = config.HTTP_TIMEOUT,
    backoff_min: float = 1,
    backoff_max: float = 8
) -> requests.Session:
    """
    Create HTTP session with retry and connection pooling.

    Args:
        max_retries: Maximum number of retry attempts for GET (default: 3)
        timeout: Request timeout in seconds applied to every method
        backoff_min: Minimum wait between attempts (1s, 2s, 4s ...)
        backoff_max: Maximum wait between attempts

    Returns:
        Configured requests.Session. Every method raises
        requests.exceptions.HTTPError for non-2xx responses.
    """
    session = requests.Session()

    retry_strategy = Retry(
        total=max_retries,
        backoff_factor=backoff_min,
        status_forcelist=RETRY_STATUS_CODES,
        allowed_methods=["GET"],
        raise_on_status=False,
    )

    adapter = HTTPAdapter(
        max_retries=retry_strategy,
        pool_connections=10,
        pool_maxsize=10,
    )
    session.mount("http://", adapter)
    session.mount("https://", adapter)

    original_get = session.get
    original_post = session.post
    original_put = session.put
    original_patch = session.patch
    original_delete = session.delete

    @retry(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=backoff_min, min=backoff_min, max=backoff_max),
        retry=retry_if_exception(is_retryable),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )
    def get_with_retry(*args, **kwargs):
        kwargs.setdefault('timeout', timeout)
        response = original_get(*args, **kwargs)
        response.raise_for_status()
        return response

    def send_once(original):
        def _send(*args, **kwargs):
            kwargs.setdefault('timeout', timeout)
            response = original(*args, **kwargs)
            response.raise_for_status()
            return response
        return _send

    session.get = get_with_retry
    session.post = send_once(original_post)
    session.put = send_once(original_put)
    session.patch = send_once(original_patch)
    session.delete = send_once(original_delete)

    return session
