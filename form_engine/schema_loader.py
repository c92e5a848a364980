"""
Schema source for the dynamic form engine.

Fetches a schema document over HTTP and validates its structure. Every failure
is raised as one of RetrievalError, SchemaTimeoutError or SchemaShapeError.
"""

import json
from typing import Any, Dict, Optional
import logging

import httpx

from .config_loader import get_config_value
from .exceptions import RetrievalError, SchemaShapeError, SchemaTimeoutError
from .schema_models import FormSchema, parse_schema

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class SchemaSource:
    """Thin wrapper around httpx.AsyncClient for simpler mocking in tests."""

    def __init__(self, timeout: Optional[float] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 headers: Optional[Dict[str, str]] = None):
        if timeout is None:
            timeout = float(get_config_value('schema', 'fetch_timeout', DEFAULT_TIMEOUT))
        self.timeout = timeout
        self._transport = transport
        self._headers = {"Accept": "application/json"}
        if headers:
            self._headers.update(headers)

    async def fetch_document(self, url: str) -> Any:
        """
        Fetch and decode the raw schema document.

        Args:
            url: Schema URL

        Returns:
            Decoded JSON document

        Raises:
            RetrievalError: On transport failure or non-success status
            SchemaTimeoutError: When the request exceeds the timeout
            SchemaShapeError: When the body is not JSON
        """
        logger.info(f"Fetching schema from {url}")
        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout),
                                         transport=self._transport,
                                         headers=self._headers) as client:
                response = await client.get(url)
        except httpx.TimeoutException as e:
            logger.error(f"Request timeout fetching {url}: {e}")
            raise SchemaTimeoutError(url=url, timeout=self.timeout) from e
        except httpx.HTTPError as e:
            logger.error(f"Failed to fetch form schema from {url}: {e}")
            raise RetrievalError(f"Failed to fetch form schema: {e}", url=url) from e

        if not response.is_success:
            error_text = response.text or 'Unknown error'
            message = f"Error {response.status_code}: {response.reason_phrase}. {error_text}"
            logger.error(f"Schema request failed: {message}")
            raise RetrievalError(message, url=url, status_code=response.status_code)

        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.error(f"Schema response from {url} is not valid JSON: {e}")
            raise SchemaShapeError(f"Invalid schema format: response is not valid JSON ({e})") from e

    async def fetch_schema(self, url: str) -> FormSchema:
        """Fetch a schema document and validate it into a FormSchema."""
        document = await self.fetch_document(url)
        return parse_schema(document)
