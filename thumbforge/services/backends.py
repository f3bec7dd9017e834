"""
HTTP clients for the image-synthesis backends.

Every backend exposes `synthesize(prompt, reference_images) -> bytes` and
raises BackendError on failure. Calls go straight to the providers' REST APIs
via requests:
- flux_pulid: Replicate predictions API (FLUX + PuLID, keeps the reference face)
- gemini_flash / gemini_exp: Gemini generateContent with inline image parts

IMPORTANT: every call goes through the backend's rate limiter. 429 responses
are never retried here; they start the limiter's backoff and fail the call so
the router can move on to the fallback backend.
"""

from __future__ import annotations

import base64
import logging
import os
import time
from datetime import datetime
from io import BytesIO
from pathlib import Path
from typing import Callable, Dict, Optional, Protocol, Sequence, TypeVar

import requests
from PIL import Image

from thumbforge.models.jobs import ReferenceImage
from thumbforge.services.errors import BackendError, BackendUnavailable
from thumbforge.services.rate_limiter import get_rate_limiter

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Only transient server errors (5xx) are retried; rate limits are handled by the limiter.
MAX_RETRIES = 2
RETRY_DELAY = 2  # seconds
RETRY_BACKOFF = 2
RATE_LIMIT_TIMEOUT = 30.0

DEFAULT_FLUX_MODEL = "zsxkib/flux-pulid:8baa7ef2255075b46f4d91cd238c21d31181b3e6a864463f967960bb0112525b"

FLUX_SETTINGS = {
    "width": 1280,
    "height": 720,
    "num_steps": 20,
    "guidance_scale": 4,
    "id_weight": 1.2,
    "start_step": 0,
    "true_cfg": 1,
    "output_format": "png",
    "output_quality": 95,
}

NEGATIVE_PROMPT = ", ".join(
    [
        "blurry",
        "low quality",
        "pixelated",
        "watermark",
        "deformed",
        "bad anatomy",
        "bad hands",
        "extra fingers",
        "poorly drawn face",
        "duplicate",
        "disfigured",
        "text",
        "logo",
        "signature",
    ]
)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


def trace_log_path() -> Path:
    return Path(os.environ.get("THUMBFORGE_TRACE_LOG", "output.txt"))


def log_to_file(message: str) -> None:
    """Append message to the operator trace log with a timestamp."""
    timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    with open(trace_log_path(), "a", encoding="utf-8") as f:
        f.write(f"[{timestamp}] {message}\n")


class ImageBackend(Protocol):
    """Anything that can turn a prompt (and optional reference faces) into image bytes."""

    id: str

    def synthesize(self, prompt: str, reference_images: Sequence[ReferenceImage]) -> bytes:
        ...


def error_from_response(response: requests.Response, backend_id: str) -> BackendError:
    """Translate a failed provider response into a BackendError with a stable code."""
    status = response.status_code
    try:
        body = response.json()
        detail = body.get("detail") or body.get("error") or body
    except ValueError:
        detail = response.text[:200]

    if status == 429:
        code = "RATE_LIMITED"
    elif status in (401, 403):
        code = "UNAUTHORIZED"
    elif 400 <= status < 500:
        code = "INVALID_INPUT"
    else:
        code = "SERVER_ERROR"
    return BackendError(f"{backend_id} returned {status}: {detail}", code=code, backend_id=backend_id)


def image_to_data_uri(image: ReferenceImage) -> str:
    """Re-encode a reference image as a PNG data URI."""
    buffer = BytesIO()
    try:
        Image.open(BytesIO(image.data)).convert("RGB").save(buffer, format="PNG")
    except (OSError, ValueError) as exc:
        raise BackendError(f"Reference image could not be decoded: {exc}", code="INVALID_INPUT") from exc
    b64_data = base64.b64encode(buffer.getvalue()).decode("utf-8")
    return f"data:image/png;base64,{b64_data}"


class _RateLimitedBackend:
    """Shared retry and rate-limit handling for the HTTP backends."""

    id = "backend"
    name = "Backend"

    def __init__(self, api_key: Optional[str]):
        self.api_key = api_key
        self.available = bool(api_key)
        self.limiter = get_rate_limiter(self.id)

    def is_available(self) -> bool:
        return self.available

    def _require_configured(self) -> None:
        if not self.is_available():
            message = f"❌ {self.name.upper()} NOT CONFIGURED - skipping backend"
            print(f"\n{message}")
            log_to_file(message)
            raise BackendError(f"{self.name} is not configured", code="NOT_CONFIGURED", backend_id=self.id)

    def _call(self, attempt_fn: Callable[[int], T]) -> T:
        """
        Run one synthesis call with rate limiting and 5xx retries.

        Strategy:
        - Acquire a limiter token first (timeout -> RATE_LIMITED)
        - 429: report to the limiter and fail immediately
        - Other non-retryable errors fail immediately
        - Retryable errors are retried MAX_RETRIES times with exponential delay
        - Malformed responses and other request failures become BackendErrors
          so the router can still try the fallback
        """
        self._require_configured()

        logger.info("Acquiring rate limit token for %s...", self.id)
        if not self.limiter.acquire(timeout=RATE_LIMIT_TIMEOUT):
            message = f"❌ RATE LIMITER TIMEOUT ({self.id})"
            print(f"\n{message}")
            log_to_file(message)
            raise BackendError(
                f"Timed out waiting for a {self.name} rate limit token", code="RATE_LIMITED", backend_id=self.id
            )

        for attempt in range(MAX_RETRIES + 1):
            try:
                result = attempt_fn(attempt)
                self.limiter.report_success()
                return result
            except requests.exceptions.Timeout as exc:
                error = BackendError(f"{self.name} request timed out: {exc}", code="TIMEOUT", backend_id=self.id)
            except requests.exceptions.ConnectionError as exc:
                error = BackendError(f"{self.name} connection failed: {exc}", backend_id=self.id)
            except requests.exceptions.RequestException as exc:
                error = BackendError(f"{self.name} request failed: {exc}", retryable=False, backend_id=self.id)
            except BackendError as exc:
                error = exc
            except (KeyError, ValueError, TypeError) as exc:
                error = BackendError(
                    f"{self.name} returned a malformed response: {exc!r}", retryable=False, backend_id=self.id
                )

            if error.code == "RATE_LIMITED":
                self.limiter.report_429()
                message = f"❌ {self.name.upper()} RATE LIMITED (429) - backoff applied"
                print(f"\n{message}")
                log_to_file(message)
                raise error

            if not error.retryable or attempt >= MAX_RETRIES:
                message = f"❌ {self.name.upper()} FAILED after {attempt + 1} attempt(s): {error}"
                print(f"\n{message}")
                logger.error("%s failed: %s", self.name, error)
                log_to_file(message)
                raise error

            delay = RETRY_DELAY * (RETRY_BACKOFF ** attempt)
            retry_msg = f"⏳ {self.name} error ({error}) - Retrying in {delay}s (attempt {attempt + 1}/{MAX_RETRIES})..."
            print(retry_msg)
            log_to_file(retry_msg)
            time.sleep(delay)

        raise BackendError(f"{self.name} failed", backend_id=self.id)


class ReplicateFluxBackend(_RateLimitedBackend):
    """
    Face-preserving generation with FLUX + PuLID on Replicate.

    Requires a reference face; without one it raises BackendUnavailable so
    the router can substitute a creative backend.
    """

    id = "flux_pulid"
    name = "Replicate FLUX PuLID"

    def __init__(
        self,
        api_token: Optional[str] = None,
        model: Optional[str] = None,
        settings: Optional[Dict[str, object]] = None,
        poll_interval: float = 2.0,
        max_wait: float = 180.0,
    ):
        super().__init__(api_token or os.environ.get("REPLICATE_API_TOKEN"))
        self.base_url = "https://api.replicate.com/v1"
        self.model = model or os.environ.get("FLUX_PULID_MODEL") or DEFAULT_FLUX_MODEL
        self.settings = {**FLUX_SETTINGS, **(settings or {})}
        self.poll_interval = poll_interval
        self.max_wait = max_wait

        if not self.available:
            message = "⚠️  REPLICATE API TOKEN NOT FOUND - face-preserving generation DISABLED"
            print("\n" + "=" * 60)
            print(message)
            print("=" * 60)
            print("Requests with a reference face will use the creative backend instead")
            print("To enable: add REPLICATE_API_TOKEN=your_token to .env and restart")
            print("=" * 60 + "\n")
            logger.warning("REPLICATE_API_TOKEN not set. Face-preserving backend unavailable.")
            log_to_file(message)
            return

        message = "✅ REPLICATE API TOKEN FOUND - face-preserving generation ENABLED"
        print("\n" + "=" * 60)
        print(message)
        print(f"✓ Using model: {self.model}")
        print("=" * 60 + "\n")
        logger.info("Replicate FLUX PuLID backend initialized")
        log_to_file(message)
        log_to_file(f"Using model: {self.model}")

    @property
    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

    def model_version(self) -> str:
        """`owner/name:hash` -> `hash`; plain `owner/name` is passed through."""
        if ":" in self.model:
            return self.model.split(":", 1)[1]
        return self.model

    def synthesize(self, prompt: str, reference_images: Sequence[ReferenceImage]) -> bytes:
        if not reference_images:
            raise BackendUnavailable(f"{self.name} requires a reference face", backend_id=self.id)
        face_uri = image_to_data_uri(reference_images[0])
        payload = {
            "version": self.model_version(),
            "input": {
                "main_face_image": face_uri,
                "prompt": prompt,
                "negative_prompt": NEGATIVE_PROMPT,
                "num_outputs": 1,
                **self.settings,
            },
        }
        return self._call(lambda attempt: self._attempt(payload, attempt))

    def _attempt(self, payload: dict, attempt: int) -> bytes:
        attempt_suffix = f" (attempt {attempt + 1})" if attempt > 0 else ""
        info_msg = f"🚀 CALLING REPLICATE API{attempt_suffix} - Model: {self.model}"
        print(f"\n{info_msg}")
        logger.info("Calling Replicate predictions API: %s", self.model)
        log_to_file(info_msg)

        response = requests.post(f"{self.base_url}/predictions", headers=self.headers, json=payload, timeout=30)
        if response.status_code >= 400:
            raise error_from_response(response, self.id)
        prediction = response.json()

        output_url = self._wait_for_prediction(prediction["urls"]["get"])
        image = self._download(output_url)

        success_msg = "✅ REPLICATE SUCCESS - image generated"
        print(success_msg)
        log_to_file(success_msg)
        return image

    def _wait_for_prediction(self, prediction_url: str) -> str:
        start_time = time.time()
        while time.time() - start_time < self.max_wait:
            response = requests.get(prediction_url, headers=self.headers, timeout=10)
            if response.status_code >= 400:
                raise error_from_response(response, self.id)
            prediction = response.json()
            status = prediction.get("status")

            if status == "succeeded":
                output = prediction.get("output")
                if isinstance(output, str):
                    return output
                if isinstance(output, list) and output:
                    return output[0]
                raise BackendError("Prediction succeeded but returned no output", code="NO_OUTPUT", backend_id=self.id)
            if status == "failed":
                raise BackendError(
                    f"Prediction failed: {prediction.get('error', 'Unknown error')}",
                    code="SERVER_ERROR",
                    retryable=False,
                    backend_id=self.id,
                )
            if status == "canceled":
                raise BackendError("Prediction was canceled", code="SERVER_ERROR", retryable=False, backend_id=self.id)
            if status not in ("starting", "processing"):
                logger.warning(f"Unknown prediction status: {status}")
            time.sleep(self.poll_interval)

        raise BackendError(f"Prediction timed out after {self.max_wait:.0f}s", code="TIMEOUT", backend_id=self.id)

    def _download(self, url: str) -> bytes:
        response = requests.get(url, timeout=60)
        if response.status_code >= 400:
            raise error_from_response(response, self.id)
        if not response.content:
            raise BackendError(f"Empty image downloaded from {url}", code="NO_OUTPUT", backend_id=self.id)
        return response.content


class GeminiImageBackend(_RateLimitedBackend):
    """
    Gemini image generation through the generateContent REST endpoint.

    Reference faces are sent as inline image parts; the model may ignore them.
    """

    def __init__(self, backend_id: str, model: str, name: str, api_key: Optional[str] = None):
        self.id = backend_id
        self.name = name
        self.model = model
        super().__init__(api_key or os.environ.get("GEMINI_API_KEY"))

        if not self.available:
            message = f"⚠️  GEMINI API KEY NOT FOUND - {name} DISABLED"
            print(message)
            logger.warning("GEMINI_API_KEY not set. %s unavailable.", name)
            log_to_file(message)
            return
        logger.info("%s backend initialized (model %s)", name, model)
        log_to_file(f"{name} ready, model: {model}")

    def build_payload(self, prompt: str, reference_images: Sequence[ReferenceImage]) -> dict:
        parts: list = [{"text": prompt}]
        for image in reference_images:
            parts.append(
                {
                    "inline_data": {
                        "mime_type": image.mime_type,
                        "data": base64.b64encode(image.data).decode("utf-8"),
                    }
                }
            )
        return {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {"responseModalities": ["TEXT", "IMAGE"]},
        }

    def synthesize(self, prompt: str, reference_images: Sequence[ReferenceImage]) -> bytes:
        payload = self.build_payload(prompt, reference_images)
        return self._call(lambda attempt: self._attempt(payload, attempt))

    def _attempt(self, payload: dict, attempt: int) -> bytes:
        attempt_suffix = f" (attempt {attempt + 1})" if attempt > 0 else ""
        info_msg = f"🚀 CALLING GEMINI API{attempt_suffix} - Model: {self.model}"
        print(f"\n{info_msg}")
        log_to_file(info_msg)

        response = requests.post(
            f"{GEMINI_BASE_URL}/models/{self.model}:generateContent",
            params={"key": self.api_key},
            json=payload,
            timeout=120,
        )
        if response.status_code >= 400:
            raise error_from_response(response, self.id)
        return self.extract_image(response.json())

    def extract_image(self, body: dict) -> bytes:
        """Return the first inline image of the first candidate."""
        candidates = body.get("candidates") or []
        if candidates:
            for part in candidates[0].get("content", {}).get("parts", []):
                inline = part.get("inlineData") or part.get("inline_data")
                if inline and inline.get("data"):
                    return base64.b64decode(inline["data"])
        reason = candidates[0].get("finishReason") if candidates else body.get("promptFeedback")
        raise BackendError(f"{self.name} returned no image ({reason})", code="NO_OUTPUT", backend_id=self.id)


def build_backends() -> Dict[str, ImageBackend]:
    """Instantiate the configured backends, keyed by backend id."""
    return {
        "flux_pulid": ReplicateFluxBackend(),
        "gemini_flash": GeminiImageBackend("gemini_flash", "gemini-2.5-flash-image", "Gemini 2.5 Flash Image"),
        "gemini_exp": GeminiImageBackend("gemini_exp", "gemini-2.0-flash-exp", "Gemini 2.0 Flash Exp"),
    }
