import httpx
import pytest

from apps.workers.errors import NotFoundError, RateLimitedError, UpstreamError
from apps.workers.resolver import infer_mime_from_url

from conftest import IMG_BASE


@pytest.mark.asyncio
async def test_picks_smaller_candidate(upstream, resolver):
    upstream.add_ticker(
        "AAPL",
        logo=(b"L" * 1200, "image/svg+xml"),
        icon=(b"I" * 500, "image/png"),
    )
    img = await resolver.resolve("aapl")
    assert img.bytes == 500
    assert img.mime == "image/png"
    assert img.source_url == f"{IMG_BASE}/AAPL/icon.png"


@pytest.mark.asyncio
async def test_tie_goes_to_primary(upstream, resolver):
    upstream.add_ticker("MSFT", logo=(b"a" * 64, "image/svg+xml"), icon=(b"b" * 64, "image/png"))
    img = await resolver.resolve("MSFT")
    assert img.source_url.endswith("/MSFT/logo.svg")


@pytest.mark.asyncio
async def test_only_secondary(upstream, resolver):
    upstream.add_ticker("TSLA", icon=(b"icon-bytes", "image/png"))
    img = await resolver.resolve("TSLA")
    assert img.data == b"icon-bytes"
    assert img.source_url.endswith("/TSLA/icon.png")


@pytest.mark.asyncio
async def test_no_branding_is_not_found(upstream, resolver):
    upstream.add_ticker("NVDA")
    with pytest.raises(NotFoundError):
        await resolver.resolve("NVDA")


@pytest.mark.asyncio
async def test_failed_candidate_is_treated_as_absent(upstream, resolver):
    upstream.add_ticker("META", logo=(b"x" * 10, "image/svg+xml"), icon=(b"y" * 900, "image/png"))
    upstream.images["/META/logo.svg"] = (500, b"", {})
    img = await resolver.resolve("META")
    assert img.bytes == 900


@pytest.mark.asyncio
async def test_every_candidate_failing_is_upstream_error(upstream, resolver):
    upstream.add_ticker("META", logo=(b"x", "image/svg+xml"), icon=(b"y", "image/png"))
    upstream.images["/META/logo.svg"] = (404, b"", {})
    upstream.raise_for["/META/icon.png"] = httpx.ConnectError("refused")
    with pytest.raises(UpstreamError):
        await resolver.resolve("META")


@pytest.mark.asyncio
async def test_overview_429_carries_retry_after(upstream, resolver):
    upstream.overview["AAPL"] = (429, {"status": "ERROR"}, {"retry-after": "30"})
    with pytest.raises(RateLimitedError) as exc:
        await resolver.resolve("AAPL")
    assert exc.value.retry_after == "30"


@pytest.mark.asyncio
async def test_candidate_429_aborts_resolution(upstream, resolver):
    upstream.add_ticker("AAPL", logo=(b"x" * 10, "image/svg+xml"), icon=(b"y" * 5, "image/png"))
    upstream.images["/AAPL/icon.png"] = (429, b"", {})
    with pytest.raises(RateLimitedError) as exc:
        await resolver.resolve("AAPL")
    assert exc.value.retry_after is None


@pytest.mark.asyncio
async def test_overview_server_error(upstream, resolver):
    upstream.overview["AAPL"] = (503, {"status": "ERROR"}, {})
    with pytest.raises(UpstreamError):
        await resolver.resolve("AAPL")


@pytest.mark.asyncio
async def test_overview_timeout_is_upstream_error(upstream, resolver):
    upstream.raise_for["/v3/reference/tickers/AAPL"] = httpx.ReadTimeout("slow")
    with pytest.raises(UpstreamError):
        await resolver.resolve("AAPL")


@pytest.mark.asyncio
async def test_api_key_sent_but_not_stored(upstream, resolver):
    upstream.add_ticker("AAPL", logo=(b"<svg/>", "image/svg+xml"))
    img = await resolver.resolve("AAPL")
    assert all(url.params.get("apiKey") == "test-key" for url in upstream.calls)
    assert "apiKey" not in img.source_url


@pytest.mark.asyncio
async def test_content_type_falls_back_to_extension(upstream, resolver):
    upstream.add_ticker("AAPL", logo=(b"\x89PNG....", None), logo_ext="png")
    img = await resolver.resolve("AAPL")
    assert img.mime == "image/png"


@pytest.mark.asyncio
async def test_content_type_parameters_are_stripped(upstream, resolver):
    upstream.add_ticker("AAPL", logo=(b"<svg/>", "image/svg+xml; charset=utf-8"))
    img = await resolver.resolve("AAPL")
    assert img.mime == "image/svg+xml"


def test_infer_mime_from_url():
    assert infer_mime_from_url("https://x/a/logo.SVG?apiKey=1") == "image/svg+xml"
    assert infer_mime_from_url("https://x/a/icon.png") == "image/png"
    assert infer_mime_from_url("https://x/a/icon.jpeg") == "image/jpeg"
    assert infer_mime_from_url("https://x/a/icon.jpg") == "image/jpeg"
    assert infer_mime_from_url("https://x/a/icon") == "application/octet-stream"
