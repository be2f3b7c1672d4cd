import json

import httpx
import pytest

from genflow.services.error_classifier import (
    ErrorKind,
    classify_api_error,
    classify_http_status,
    classify_transport_error,
    is_transient_upstream_error,
)


@pytest.mark.parametrize(
    "status, retryable, kind",
    [
        (429, True, ErrorKind.RATE_LIMITED),
        (500, True, ErrorKind.SERVER_ERROR),
        (502, True, ErrorKind.SERVER_ERROR),
        (503, True, ErrorKind.SERVER_ERROR),
        (400, False, ErrorKind.INVALID_PARAMS),
        (401, False, ErrorKind.AUTH_ERROR),
        (403, False, ErrorKind.AUTH_ERROR),
        (404, False, ErrorKind.UNKNOWN),
    ],
)
def test_classify_http_status(status, retryable, kind):
    result = classify_http_status(status)
    assert result.is_retryable is retryable
    assert result.kind == kind


def test_transient_phrase_plain_text_is_case_insensitive():
    assert is_transient_upstream_error("Error: NO ACTIVE FLUX SERVERS AVAILABLE right now")
    assert not is_transient_upstream_error("model not found")
    assert not is_transient_upstream_error("")


def test_transient_phrase_nested_in_json():
    body = json.dumps({"error": {"message": "No active servers available for model"}})
    assert is_transient_upstream_error(body)


def test_transient_body_overrides_client_error_status():
    body = json.dumps({"message": "No active flux servers available"})
    result = classify_api_error(400, body)
    assert result.is_retryable
    assert result.kind == ErrorKind.TRANSIENT_UPSTREAM


def test_classify_api_error_falls_back_to_status():
    result = classify_api_error(401, '{"error": "invalid key"}')
    assert not result.is_retryable
    assert result.kind == ErrorKind.AUTH_ERROR


def test_transport_errors_are_retryable():
    request = httpx.Request("GET", "https://gen.test/image/x")

    timeout = classify_transport_error(httpx.ReadTimeout("slow", request=request))
    assert timeout.is_retryable
    assert timeout.kind == ErrorKind.TIMEOUT

    network = classify_transport_error(httpx.ConnectError("refused", request=request))
    assert network.is_retryable
    assert network.kind == ErrorKind.NETWORK_ERROR
