"""Tests for the PageSpeed audit provider and the error taxonomy."""

import asyncio

import httpx
import pytest

from app.models.audit import AuditErrorKind
from app.services.audit_pipeline.audit_executor import (
    PageSpeedAuditProvider,
    parse_category_scores,
)
from app.services.audit_pipeline.errors import (
    PageInvalid,
    PageNetworkError,
    PageParseError,
    PageRateLimited,
    PageTimeout,
    TransientPageError,
    classify_exception,
    classify_status,
    error_for_kind,
)

PAGE = "https://example.com/pricing"


def _psi_payload(**scores) -> dict:
    return {
        "lighthouseResult": {
            "finalUrl": PAGE,
            "fetchTime": "2026-01-01T00:00:00.000Z",
            "categories": {key: {"score": value} for key, value in scores.items()},
        }
    }


def _provider(handler, **kwargs) -> tuple[PageSpeedAuditProvider, httpx.AsyncClient]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return PageSpeedAuditProvider(client=client, **kwargs), client


class TestParseCategoryScores:
    def test_scales_and_renames(self):
        payload = _psi_payload(performance=0.91, **{"best-practices": 0.8})
        assert parse_category_scores(payload) == {"performance": 91, "best_practices": 80}

    def test_unscored_categories_skipped(self):
        payload = _psi_payload(performance=0.5, seo=None)
        assert parse_category_scores(payload) == {"performance": 50}

    def test_missing_categories(self):
        with pytest.raises(ValueError):
            parse_category_scores({"lighthouseResult": {}})

    def test_all_unscored(self):
        with pytest.raises(ValueError):
            parse_category_scores(_psi_payload(seo=None))


@pytest.mark.asyncio
class TestPageSpeedAuditProvider:
    async def test_success(self):
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, json=_psi_payload(performance=0.42, seo=1.0))

        provider, client = _provider(handler, api_key="secret", strategy="desktop")
        async with client:
            outcome = await provider.audit_page(PAGE)

        assert outcome.success is True
        assert outcome.scores == {"performance": 42, "seo": 100}
        assert outcome.details["final_url"] == PAGE

        params = captured[0].url.params
        assert params["url"] == PAGE
        assert params["strategy"] == "desktop"
        assert params["key"] == "secret"
        assert params.get_list("category") == [
            "performance",
            "accessibility",
            "best-practices",
            "seo",
        ]

    async def test_no_key_param_without_api_key(self):
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, json=_psi_payload(performance=1.0))

        provider, client = _provider(handler)
        async with client:
            await provider.audit_page(PAGE)

        assert "key" not in captured[0].url.params

    @pytest.mark.parametrize(
        "status,kind",
        [
            (429, AuditErrorKind.RATE_LIMITED),
            (500, AuditErrorKind.NETWORK),
            (503, AuditErrorKind.NETWORK),
            (400, AuditErrorKind.INVALID),
            (404, AuditErrorKind.INVALID),
        ],
    )
    async def test_http_errors_become_typed_outcomes(self, status, kind):
        provider, client = _provider(lambda request: httpx.Response(status, text="error"))
        async with client:
            outcome = await provider.audit_page(PAGE)

        assert outcome.success is False
        assert outcome.error_kind == kind

    async def test_connection_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        provider, client = _provider(handler)
        async with client:
            outcome = await provider.audit_page(PAGE)

        assert outcome.error_kind == AuditErrorKind.NETWORK

    async def test_read_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        provider, client = _provider(handler)
        async with client:
            outcome = await provider.audit_page(PAGE)

        assert outcome.error_kind == AuditErrorKind.TIMEOUT

    async def test_unparseable_body(self):
        provider, client = _provider(lambda request: httpx.Response(200, text="<html>"))
        async with client:
            outcome = await provider.audit_page(PAGE)

        assert outcome.error_kind == AuditErrorKind.PARSE

    async def test_missing_categories(self):
        provider, client = _provider(lambda request: httpx.Response(200, json={"lighthouseResult": {}}))
        async with client:
            outcome = await provider.audit_page(PAGE)

        assert outcome.success is False
        assert outcome.error_kind == AuditErrorKind.PARSE


class TestErrorTaxonomy:
    def test_transient_vs_permanent(self):
        assert issubclass(PageTimeout, TransientPageError)
        assert issubclass(PageNetworkError, TransientPageError)
        assert issubclass(PageRateLimited, TransientPageError)
        assert not issubclass(PageInvalid, TransientPageError)
        assert not issubclass(PageParseError, TransientPageError)

    def test_classify_status(self):
        assert classify_status(200, PAGE) is None
        assert isinstance(classify_status(429, PAGE), PageRateLimited)
        assert isinstance(classify_status(502, PAGE), PageNetworkError)
        assert isinstance(classify_status(403, PAGE), PageInvalid)

    def test_classify_exception(self):
        assert isinstance(classify_exception(asyncio.TimeoutError(), PAGE), PageTimeout)
        assert isinstance(classify_exception(ValueError("bad json"), PAGE), PageParseError)
        assert isinstance(classify_exception(KeyError("x"), PAGE), PageInvalid)

        existing = PageRateLimited(PAGE)
        assert classify_exception(existing, PAGE) is existing

    def test_error_for_kind(self):
        error = error_for_kind(AuditErrorKind.TIMEOUT, PAGE, "took too long")
        assert isinstance(error, PageTimeout)
        assert error.url == PAGE
        assert error.message == "took too long"
        assert error.error_kind == AuditErrorKind.TIMEOUT

    def test_default_message_is_kind(self):
        assert error_for_kind(AuditErrorKind.NETWORK, PAGE).message == "network"
