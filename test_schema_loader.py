"""
Unit tests for schema_loader module.
"""

import asyncio
import json

import httpx
import pytest

from form_engine.exceptions import RetrievalError, SchemaShapeError, SchemaTimeoutError
from form_engine.schema_loader import SchemaSource

URL = "https://forms.example.com/form_fields"

DOCUMENT = [
    {"title": "Contact", "fields": [
        {"type": "input", "label": "Email",
         "rules": {"required": {"value": True, "error_message": "Email is required"}}}
    ]}
]


def source_for(handler) -> SchemaSource:
    return SchemaSource(timeout=1.0, transport=httpx.MockTransport(handler))


class TestSchemaSource:
    """Test class for SchemaSource."""

    def test_fetch_schema(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=DOCUMENT)

        schema = asyncio.run(source_for(handler).fetch_schema(URL))

        assert schema.field_ids() == ["contact_email"]
        assert str(requests[0].url) == URL
        assert requests[0].headers["accept"] == "application/json"

    def test_error_status(self):
        def handler(request):
            return httpx.Response(404, text="Not here")

        with pytest.raises(RetrievalError) as exc_info:
            asyncio.run(source_for(handler).fetch_schema(URL))

        assert exc_info.value.status_code == 404
        assert exc_info.value.message == "Error 404: Not Found. Not here"

    def test_server_error_without_body(self):
        def handler(request):
            return httpx.Response(500)

        with pytest.raises(RetrievalError, match="Error 500: Internal Server Error. Unknown error"):
            asyncio.run(source_for(handler).fetch_schema(URL))

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(SchemaTimeoutError) as exc_info:
            asyncio.run(source_for(handler).fetch_schema(URL))

        assert exc_info.value.message == "Request timeout: The server took too long to respond"
        assert isinstance(exc_info.value, TimeoutError)

    def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(RetrievalError, match="connection refused"):
            asyncio.run(source_for(handler).fetch_schema(URL))

    def test_non_json_body(self):
        def handler(request):
            return httpx.Response(200, text="<html>oops</html>")

        with pytest.raises(SchemaShapeError, match="not valid JSON"):
            asyncio.run(source_for(handler).fetch_schema(URL))

    def test_wrong_shape(self):
        def handler(request):
            return httpx.Response(200, content=json.dumps({"sections": []}))

        with pytest.raises(SchemaShapeError, match="Expected an array of form sections"):
            asyncio.run(source_for(handler).fetch_schema(URL))

    def test_extra_headers(self):
        seen = {}

        def handler(request):
            seen.update(request.headers)
            return httpx.Response(200, json=[])

        source = SchemaSource(timeout=1.0, transport=httpx.MockTransport(handler),
                              headers={"X-Api-Key": "k"})
        asyncio.run(source.fetch_document(URL))
        assert seen["x-api-key"] == "k"
