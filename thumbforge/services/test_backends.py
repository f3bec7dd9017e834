"""
Test suite for the synthesis backend HTTP clients.

Provider APIs are mocked at the `requests` level; no network calls are made.
"""

import base64
import logging
from io import BytesIO
from unittest.mock import Mock, patch

import pytest
import requests
from PIL import Image

from thumbforge.models.jobs import ReferenceImage
from thumbforge.services.backends import (
    GeminiImageBackend,
    ReplicateFluxBackend,
    build_backends,
    error_from_response,
    image_to_data_uri,
)
from thumbforge.services.errors import BackendError, BackendUnavailable
from thumbforge.services.rate_limiter import BackendRateLimiter, RateLimit

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

UNLIMITED = RateLimit(requests_per_minute=6000, burst_capacity=100, min_interval_seconds=0.0)


@pytest.fixture(autouse=True)
def trace_log(tmp_path, monkeypatch):
    path = tmp_path / "trace.txt"
    monkeypatch.setenv("THUMBFORGE_TRACE_LOG", str(path))
    return path


def png_bytes(color="red", size=(8, 8)):
    buffer = BytesIO()
    Image.new("RGB", size, color=color).save(buffer, format="PNG")
    return buffer.getvalue()


def response(status_code=200, body=None, content=b""):
    mock = Mock()
    mock.status_code = status_code
    mock.json.return_value = body if body is not None else {}
    mock.text = str(body)
    mock.content = content
    return mock


def gemini(api_key="test-key"):
    backend = GeminiImageBackend("gemini_flash", "gemini-2.5-flash-image", "Gemini Flash", api_key=api_key)
    backend.limiter = BackendRateLimiter(backend.id, UNLIMITED)
    return backend


def flux(api_token="test-token"):
    backend = ReplicateFluxBackend(api_token=api_token, poll_interval=0)
    backend.limiter = BackendRateLimiter(backend.id, UNLIMITED)
    return backend


def gemini_body(data=b"image-bytes"):
    return {
        "candidates": [
            {
                "content": {
                    "parts": [
                        {"text": "Here is your thumbnail"},
                        {"inlineData": {"mimeType": "image/png", "data": base64.b64encode(data).decode()}},
                    ]
                }
            }
        ]
    }


def test_gemini_returns_inline_image():
    backend = gemini()
    with patch("thumbforge.services.backends.requests.post", return_value=response(body=gemini_body())) as post:
        image = backend.synthesize("a prompt", [ReferenceImage(data=b"face", mime_type="image/jpeg")])

    assert image == b"image-bytes"
    url = post.call_args.args[0]
    assert url.endswith("/models/gemini-2.5-flash-image:generateContent")
    payload = post.call_args.kwargs["json"]
    parts = payload["contents"][0]["parts"]
    assert parts[0] == {"text": "a prompt"}
    assert parts[1]["inline_data"]["mime_type"] == "image/jpeg"
    assert payload["generationConfig"]["responseModalities"] == ["TEXT", "IMAGE"]
    assert post.call_args.kwargs["params"] == {"key": "test-key"}
    logger.info("✓ Gemini payload and response handled")


def test_gemini_without_image_is_no_output():
    backend = gemini()
    body = {"candidates": [{"content": {"parts": [{"text": "no"}]}, "finishReason": "SAFETY"}]}
    with patch("thumbforge.services.backends.requests.post", return_value=response(body=body)):
        with pytest.raises(BackendError) as excinfo:
            backend.synthesize("prompt", [])
    assert excinfo.value.code == "NO_OUTPUT"
    assert "SAFETY" in str(excinfo.value)


def test_rate_limited_response_is_not_retried():
    backend = gemini()
    with patch(
        "thumbforge.services.backends.requests.post",
        return_value=response(429, {"error": "quota"}),
    ) as post, patch("thumbforge.services.backends.time.sleep") as sleep:
        with pytest.raises(BackendError) as excinfo:
            backend.synthesize("prompt", [])

    assert excinfo.value.code == "RATE_LIMITED"
    assert post.call_count == 1
    sleep.assert_not_called()
    assert backend.limiter.consecutive_429s == 1


def test_server_errors_are_retried_with_backoff():
    backend = gemini()
    responses = [response(500, {"error": "oops"}), response(503, {"error": "busy"}), response(body=gemini_body())]
    with patch("thumbforge.services.backends.requests.post", side_effect=responses) as post, patch(
        "thumbforge.services.backends.time.sleep"
    ) as sleep:
        assert backend.synthesize("prompt", []) == b"image-bytes"

    assert post.call_count == 3
    assert [c.args[0] for c in sleep.call_args_list] == [2, 4]


def test_timeouts_give_up_after_max_retries():
    backend = gemini()
    with patch(
        "thumbforge.services.backends.requests.post",
        side_effect=requests.exceptions.Timeout("slow"),
    ) as post, patch("thumbforge.services.backends.time.sleep"):
        with pytest.raises(BackendError) as excinfo:
            backend.synthesize("prompt", [])

    assert excinfo.value.code == "TIMEOUT"
    assert post.call_count == 3


def test_invalid_input_fails_immediately():
    backend = gemini()
    with patch(
        "thumbforge.services.backends.requests.post",
        return_value=response(400, {"error": "bad prompt"}),
    ) as post:
        with pytest.raises(BackendError) as excinfo:
            backend.synthesize("prompt", [])
    assert excinfo.value.code == "INVALID_INPUT"
    assert not excinfo.value.retryable
    assert post.call_count == 1


def test_unconfigured_backend_never_calls_out(monkeypatch, trace_log):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    backend = gemini(api_key=None)
    with patch("thumbforge.services.backends.requests.post") as post:
        with pytest.raises(BackendError) as excinfo:
            backend.synthesize("prompt", [])
    assert excinfo.value.code == "NOT_CONFIGURED"
    post.assert_not_called()
    assert "NOT CONFIGURED" in trace_log.read_text(encoding="utf-8")


def test_flux_requires_reference_face():
    with pytest.raises(BackendUnavailable):
        flux().synthesize("prompt", [])


def test_flux_prediction_flow():
    backend = flux()
    created = response(201, {"id": "p1", "urls": {"get": "https://api.replicate.com/v1/predictions/p1"}})
    polls = [
        response(body={"status": "starting"}),
        response(body={"status": "succeeded", "output": ["https://cdn.example/out.png"]}),
        response(content=b"final-image"),
    ]
    with patch("thumbforge.services.backends.requests.post", return_value=created) as post, patch(
        "thumbforge.services.backends.requests.get", side_effect=polls
    ) as get, patch("thumbforge.services.backends.time.sleep"):
        image = backend.synthesize("prompt", [ReferenceImage(data=png_bytes())])

    assert image == b"final-image"
    payload = post.call_args.kwargs["json"]
    assert payload["version"] == backend.model_version()
    assert payload["input"]["main_face_image"].startswith("data:image/png;base64,")
    assert payload["input"]["width"] == 1280
    assert post.call_args.kwargs["headers"]["Authorization"] == "Bearer test-token"
    assert get.call_args_list[-1].args[0] == "https://cdn.example/out.png"


def test_flux_failed_prediction_is_not_retried():
    backend = flux()
    created = response(201, {"urls": {"get": "https://api.replicate.com/v1/predictions/p2"}})
    with patch("thumbforge.services.backends.requests.post", return_value=created) as post, patch(
        "thumbforge.services.backends.requests.get",
        return_value=response(body={"status": "failed", "error": "NSFW"}),
    ), patch("thumbforge.services.backends.time.sleep"):
        with pytest.raises(BackendError) as excinfo:
            backend.synthesize("prompt", [ReferenceImage(data=png_bytes())])
    assert "NSFW" in str(excinfo.value)
    assert post.call_count == 1


def test_corrupt_reference_face_is_invalid_input():
    with patch("thumbforge.services.backends.requests.post") as post:
        with pytest.raises(BackendError) as excinfo:
            flux().synthesize("prompt", [ReferenceImage(data=b"not an image")])
    assert excinfo.value.code == "INVALID_INPUT"
    post.assert_not_called()


def test_malformed_prediction_becomes_backend_error():
    backend = flux()
    with patch(
        "thumbforge.services.backends.requests.post", return_value=response(201, {"id": "p3"})
    ) as post, patch("thumbforge.services.backends.time.sleep"):
        with pytest.raises(BackendError) as excinfo:
            backend.synthesize("prompt", [ReferenceImage(data=png_bytes())])
    assert "malformed response" in str(excinfo.value)
    assert post.call_count == 1


def test_error_codes_from_status():
    assert error_from_response(response(403, {"detail": "nope"}), "x").code == "UNAUTHORIZED"
    assert error_from_response(response(429, {}), "x").code == "RATE_LIMITED"
    assert error_from_response(response(422, {}), "x").code == "INVALID_INPUT"
    assert error_from_response(response(502, {}), "x").code == "SERVER_ERROR"


def test_image_to_data_uri_reencodes_as_png():
    uri = image_to_data_uri(ReferenceImage(data=png_bytes("blue"), mime_type="image/png"))
    decoded = base64.b64decode(uri.split(",", 1)[1])
    assert Image.open(BytesIO(decoded)).getpixel((0, 0)) == (0, 0, 255)


def test_model_version_strips_owner():
    assert flux().model_version() == flux().model.split(":", 1)[1]
    assert ReplicateFluxBackend(api_token="t", model="owner/name").model_version() == "owner/name"


def test_build_backends_ids(monkeypatch):
    monkeypatch.delenv("REPLICATE_API_TOKEN", raising=False)
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    backends = build_backends()
    assert set(backends) == {"flux_pulid", "gemini_flash", "gemini_exp"}
    assert all(backend_id == backend.id for backend_id, backend in backends.items())
    assert not any(backend.is_available() for backend in backends.values())
