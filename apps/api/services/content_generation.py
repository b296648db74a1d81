"""
Content generation / grading client.

The upstream service is a black box: request {description, constraints},
response {success, content | error}. A non-success answer is an ordinary
outcome here, never an exception, and callers show a retry affordance when
`retryable` is set.
"""
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import requests

from core.retry import retry_with_backoff

logger = logging.getLogger(__name__)


class _TransientUpstreamError(Exception):
    """Upstream said try again (5xx or 429)."""

    def __init__(self, status_code: int):
        super().__init__(f"upstream returned {status_code}")
        self.status_code = status_code


@dataclass
class ContentResult:
    success: bool
    content: Optional[Any] = None
    error: Optional[str] = None
    retryable: bool = False


class ContentGenerationClient:
    def __init__(
        self,
        base_url: Optional[str],
        api_key: Optional[str] = None,
        timeout: int = 30,
        retry_attempts: int = 3,
        retry_base_delay: float = 1.0,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_url = base_url.rstrip("/") if base_url else None
        self.api_key = api_key
        self.timeout = timeout
        self.retry_attempts = retry_attempts
        self.retry_base_delay = retry_base_delay
        self.session = session or requests.Session()
        self._sleep = sleep

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    def generate_content(self, description: str, constraints: Optional[Dict[str, Any]] = None) -> ContentResult:
        return self._post("/generate-content", {"description": description, "constraints": constraints or {}})

    def grade_answer(self, question: str, answer: str, rubric: Optional[str] = None) -> ContentResult:
        return self._post("/grade-answer", {"question": question, "answer": answer, "rubric": rubric})

    def _post(self, path: str, payload: Dict[str, Any]) -> ContentResult:
        if not self.configured:
            return ContentResult(success=False, error="Content service is not configured")

        url = f"{self.base_url}{path}"
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        def call() -> requests.Response:
            r = self.session.post(url, json=payload, headers=headers, timeout=self.timeout)
            if r.status_code == 429 or r.status_code >= 500:
                raise _TransientUpstreamError(r.status_code)
            return r

        try:
            r = retry_with_backoff(
                call,
                attempts=self.retry_attempts,
                base_delay=self.retry_base_delay,
                retry_on=(_TransientUpstreamError, requests.exceptions.ConnectionError, requests.exceptions.Timeout),
                sleep=self._sleep,
                label=f"Content service {path}",
            )
        except _TransientUpstreamError as e:
            return ContentResult(success=False, error=f"Content service unavailable ({e.status_code})", retryable=True)
        except requests.exceptions.Timeout:
            return ContentResult(success=False, error="Content service timed out", retryable=True)
        except requests.exceptions.RequestException as e:
            logger.warning(f"Content service request failed: {e}")
            return ContentResult(success=False, error="Content service unreachable", retryable=True)

        if r.status_code >= 400:
            logger.warning(f"Content service rejected request to {path}: {r.status_code}")
            return ContentResult(success=False, error=f"Content service rejected the request ({r.status_code})")

        try:
            body = r.json()
        except ValueError:
            return ContentResult(success=False, error="Content service returned an invalid response", retryable=True)

        if not isinstance(body, dict) or not body.get("success"):
            error = body.get("error") if isinstance(body, dict) else None
            return ContentResult(success=False, error=str(error or "Content generation failed"), retryable=True)

        return ContentResult(success=True, content=body.get("content"))
