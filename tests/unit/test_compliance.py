"""Unit tests for the HTTP compliance screening client."""

import httpx
import pytest

from evidence_core.core.exceptions import ComplianceError
from evidence_core.services import HttpComplianceClient

pytestmark = pytest.mark.asyncio


def screening_client(handler) -> HttpComplianceClient:
    """A client whose requests are answered by `handler` instead of the network."""
    client = HttpComplianceClient(api_url="https://screen.test", api_key="key")
    client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return client


class TestHttpComplianceClient:
    async def test_verdict_parsed(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/screen"
            assert request.headers["Authorization"] == "Bearer key"
            return httpx.Response(
                200,
                json={"passed": False, "risk_score": 0.92, "matches": [{"term": "incite", "risk_score": 0.92}]},
            )

        client = screening_client(handler)
        result = await client.screen("text", "EN")
        await client.__aexit__(None, None, None)

        assert result.passed is False
        assert result.risk_score == pytest.approx(0.92)
        assert [m.term for m in result.matches] == ["incite"]

    async def test_body_that_is_not_json_raises_compliance_error(self) -> None:
        client = screening_client(lambda request: httpx.Response(200, text="<html>gateway</html>"))

        with pytest.raises(ComplianceError, match="not JSON"):
            await client.screen("text", "EN")
        await client.__aexit__(None, None, None)

    async def test_client_error_status_is_not_retried(self) -> None:
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(403, text="forbidden")

        client = screening_client(handler)
        with pytest.raises(ComplianceError, match="403"):
            await client.screen("text", "EN")
        await client.__aexit__(None, None, None)

        assert len(calls) == 1
