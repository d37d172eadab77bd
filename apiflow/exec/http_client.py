"""
Default HTTP client built on httpx.

Any object with a ``request(url, options) -> HttpResponse`` method can stand
in for it; failures must be raised as TransportError subclasses.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from ..exceptions import NetworkError, ProtocolError, TransportError
from .retry import RetryPolicy
from .types import HttpResponse, RequestOptions


logger = logging.getLogger(__name__)


def parse_body(response: httpx.Response) -> Any:
    """Decode a response body according to its content type."""
    if not response.content:
        return None

    content_type = response.headers.get('content-type', '').lower()
    if 'json' in content_type:
        try:
            return response.json()
        except ValueError:
            return response.text
    if content_type.startswith('text/') or 'xml' in content_type:
        return response.text

    try:
        return response.json()
    except ValueError:
        return response.text


class HttpxClient:
    """
    Synchronous HTTP client with operation-level retries.

    Args:
        transport: Optional httpx transport (httpx.MockTransport in tests)
        client: Pre-configured httpx.Client to use instead of creating one
    """

    def __init__(
        self,
        transport: Optional[httpx.BaseTransport] = None,
        client: Optional[httpx.Client] = None
    ):
        self._client = client or httpx.Client(transport=transport, follow_redirects=True)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "HttpxClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def request(self, url: str, options: RequestOptions) -> HttpResponse:
        """
        Perform a request, retrying transient failures.

        Raises:
            ProtocolError: Final response status was 400 or above
            NetworkError: No response could be obtained
            RunCancelledError: The cancel token fired before or after a call
        """
        policy = RetryPolicy.for_operation(options.retry_count, options.retry_delay_ms)
        token = options.cancel_token
        attempt = 0

        while True:
            if token is not None:
                token.raise_if_cancelled()

            status_code: Optional[int] = None
            try:
                response = self._send(url, options)
                if token is not None:
                    token.raise_if_cancelled()
                if response.status_code < 400:
                    return response
                status_code = response.status_code
                error: TransportError = ProtocolError(
                    options.method, url, response.status_code,
                    response.status_text, response.body
                )
            except NetworkError as e:
                error = e

            if not policy.should_retry(status_code, attempt):
                raise error

            attempt += 1
            logger.info(f"Retrying {options.method} {url} (attempt {attempt}/{policy.max_retries}): {error.message}")
            policy.wait(token)

    def _send(self, url: str, options: RequestOptions) -> HttpResponse:
        timeout = options.timeout_ms / 1000.0
        if options.cancel_token is not None:
            timeout = options.cancel_token.cap_timeout(timeout)

        kwargs: Dict[str, Any] = {
            'headers': options.headers,
            'params': {k: v for k, v in options.query.items() if v is not None},
            'timeout': timeout,
        }
        kwargs.update(self._body_arguments(options))

        logger.debug(f"{options.method} {url}")
        try:
            response = self._client.request(options.method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise NetworkError(options.method, url, f"timed out ({e})")
        except httpx.RequestError as e:
            raise NetworkError(options.method, url, str(e) or type(e).__name__)

        return HttpResponse(
            status_code=response.status_code,
            headers={k.lower(): v for k, v in response.headers.items()},
            body=parse_body(response),
            status_text=response.reason_phrase,
        )

    def _body_arguments(self, options: RequestOptions) -> Dict[str, Any]:
        body = options.body
        if body is None:
            return {}
        if isinstance(body, bytes):
            return {'content': body}
        if isinstance(body, str):
            return {'content': body.encode('utf-8')}

        content_type = (options.content_type or 'application/json').lower()
        if 'x-www-form-urlencoded' in content_type and isinstance(body, dict):
            return {'data': body}
        return {'json': body}
