"""
Compliance screening client.

The Safety stage of the approval pipeline sends content to an external
compliance screening collaborator, which returns a pass/fail verdict, a
risk score and the matches it found.

Features:
- Async HTTP requests over httpx
- Retry logic with random exponential backoff on transport errors and 5xx
- ComplianceError once retries are exhausted (the stage then holds for a
  human instead of failing the content)
- Mock client for tests and local development
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx
from tenacity import RetryError, retry, retry_if_exception_type, stop_after_attempt, wait_random_exponential

from evidence_core.core.config import settings
from evidence_core.core.exceptions import ComplianceError
from evidence_core.core.logging import get_logger

logger = get_logger(__name__)


# =============================================================================
# Enums and Data Classes
# =============================================================================


class ComplianceProvider(str, Enum):
    """Supported compliance screening providers."""

    HTTP = "http"
    MOCK = "mock"


@dataclass
class ScreeningMatch:
    """One hit returned by the screening collaborator."""

    term: str
    risk_score: float
    category: str | None = None
    resolved: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "term": self.term,
            "risk_score": self.risk_score,
            "category": self.category,
            "resolved": self.resolved,
        }


@dataclass
class ScreeningResult:
    """Verdict of one screening call."""

    passed: bool
    risk_score: float
    matches: list[ScreeningMatch] = field(default_factory=list)
    raw_response: dict[str, Any] = field(default_factory=dict)

    def blocking_matches(self, threshold: float) -> list[ScreeningMatch]:
        """Unresolved matches whose risk exceeds the threshold."""
        return [m for m in self.matches if not m.resolved and m.risk_score > threshold]


class _TransientComplianceError(Exception):
    """Retryable server-side failure."""


# =============================================================================
# Base Client
# =============================================================================


class BaseComplianceClient(ABC):
    """Abstract base class for compliance screening clients."""

    def __init__(self, timeout: float | None = None):
        self.timeout = timeout or settings.compliance_timeout
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "BaseComplianceClient":
        self._client = httpx.AsyncClient(timeout=self.timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Close the pooled HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Client opened by `async with`; raises outside the context."""
        if self._client is None:
            raise RuntimeError(
                "Compliance client must be used as async context manager: "
                "async with get_compliance_client() as client: ..."
            )
        return self._client

    @abstractmethod
    async def screen(self, text: str, lang: str, metadata: dict[str, Any] | None = None) -> ScreeningResult:
        """
        Screen one piece of content.

        Raises:
            ComplianceError: If the collaborator cannot be reached
        """

    @abstractmethod
    def provider(self) -> ComplianceProvider:
        """Which backend answered, recorded on each ScreeningEvent."""


# =============================================================================
# HTTP Client
# =============================================================================


class HttpComplianceClient(BaseComplianceClient):
    """Client for an HTTP compliance screening service."""

    def __init__(self, api_url: str | None = None, api_key: str | None = None, timeout: float | None = None):
        super().__init__(timeout=timeout)
        self.api_url = api_url or settings.compliance_api_url
        self.api_key = api_key or settings.compliance_api_key

        if not self.api_url:
            raise ValueError("Compliance API URL not configured. Set COMPLIANCE_API_URL in .env")

    def provider(self) -> ComplianceProvider:
        return ComplianceProvider.HTTP

    async def screen(self, text: str, lang: str, metadata: dict[str, Any] | None = None) -> ScreeningResult:
        try:
            return await self._screen(text, lang, metadata or {})
        except RetryError as e:
            cause = e.last_attempt.exception()
            logger.error("Compliance screening unavailable", error=str(cause))
            raise ComplianceError(f"Compliance screening failed: {cause}") from cause

    @retry(
        retry=retry_if_exception_type((httpx.HTTPError, _TransientComplianceError)),
        stop=stop_after_attempt(3),
        wait=wait_random_exponential(multiplier=1, min=1, max=10),
    )
    async def _screen(self, text: str, lang: str, metadata: dict[str, Any]) -> ScreeningResult:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        response = await self.client.post(
            f"{self.api_url.rstrip('/')}/screen",
            headers=headers,
            json={"text": text, "lang": lang, "metadata": metadata},
        )

        if response.status_code >= 500 or response.status_code == 429:
            logger.warning("Compliance service unavailable, retrying", status_code=response.status_code)
            raise _TransientComplianceError(f"Compliance service returned {response.status_code}")

        if response.status_code != 200:
            logger.error("Compliance API error", status_code=response.status_code, response=response.text[:500])
            raise ComplianceError(f"Compliance API returned status {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            logger.error("Compliance API returned malformed body", response=response.text[:500])
            raise ComplianceError("Compliance API returned a body that is not JSON") from e
        if not isinstance(data, dict):
            raise ComplianceError("Compliance API returned an unexpected body")
        matches = [
            ScreeningMatch(
                term=m.get("term", ""),
                risk_score=float(m.get("risk_score", 0.0)),
                category=m.get("category"),
                resolved=bool(m.get("resolved", False)),
            )
            for m in data.get("matches", [])
        ]
        return ScreeningResult(
            passed=bool(data.get("passed", False)),
            risk_score=float(data.get("risk_score", max((m.risk_score for m in matches), default=0.0))),
            matches=matches,
            raw_response=data,
        )


# =============================================================================
# Scripted client for tests and local runs
# =============================================================================


class MockComplianceClient(BaseComplianceClient):
    """
    Mock compliance client for testing without API calls.

    Flags any configured term found in the text with its risk score; the
    verdict fails once a flagged term exceeds the configured risk threshold.
    `fail_with` makes every call raise, to exercise the unavailable path.
    """

    def __init__(
        self,
        flagged_terms: dict[str, float] | None = None,
        fail_with: Exception | None = None,
        timeout: float | None = None,
    ):
        super().__init__(timeout=timeout)
        self.flagged_terms = flagged_terms or {}
        self.fail_with = fail_with
        self.calls: list[str] = []

    async def __aenter__(self) -> "MockComplianceClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        return None

    def provider(self) -> ComplianceProvider:
        return ComplianceProvider.MOCK

    async def screen(self, text: str, lang: str, metadata: dict[str, Any] | None = None) -> ScreeningResult:
        self.calls.append(text)
        if self.fail_with is not None:
            raise ComplianceError(f"Mock compliance failure: {self.fail_with}") from self.fail_with

        lowered = text.lower()
        matches = [
            ScreeningMatch(term=term, risk_score=score, category="mock")
            for term, score in self.flagged_terms.items()
            if term.lower() in lowered
        ]
        risk = max((m.risk_score for m in matches), default=0.0)
        return ScreeningResult(passed=risk <= settings.compliance_risk_threshold, risk_score=risk, matches=matches)


# =============================================================================
# Provider selection
# =============================================================================


def get_compliance_client(provider: str | ComplianceProvider | None = None, **kwargs) -> BaseComplianceClient:
    """
    Factory function to get a compliance screening client.

    Example:
        async with get_compliance_client() as client:
            result = await client.screen(body, "EN")
    """
    if provider is None:
        provider = settings.compliance_provider

    if isinstance(provider, str):
        provider = ComplianceProvider(provider.lower())

    if provider == ComplianceProvider.HTTP:
        return HttpComplianceClient(**kwargs)
    elif provider == ComplianceProvider.MOCK:
        return MockComplianceClient(**kwargs)
    else:
        raise ValueError(f"Unsupported compliance provider: {provider}")
