"""Image proxy - fetches generated images for the browser.

Provider image URLs live on blob storage without CORS headers, so the frontend
loads them through this endpoint. Only a fixed set of hosts is proxied.
"""

import logging
from urllib.parse import urlparse

import httpx
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response

from chatrelay.core.config import settings
from chatrelay.core.errors import RequestError

logger = logging.getLogger(__name__)

router = APIRouter()

CACHE_HEADERS = {
    "Cache-Control": "public, max-age=3600",
    "X-Content-Type-Options": "nosniff",
}
ALLOWED_METHODS = "GET, OPTIONS"
MAX_REDIRECTS = 3


def get_http_transport() -> httpx.AsyncBaseTransport | None:
    """Transport for outgoing proxy requests; ``None`` means the httpx default."""
    return None


def is_allowed_image_url(url: str) -> bool:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return False
    host = parsed.hostname.lower()
    return any(
        host == domain or host.endswith(f".{domain}")
        for domain in settings.image_proxy_allowed_domains
    )


async def _fetch(client: httpx.AsyncClient, url: str) -> httpx.Response:
    """GET ``url``, following redirects only while they stay on allowed hosts."""
    request = client.build_request("GET", url, headers={"User-Agent": f"{settings.app_name}/1.0"})
    for _ in range(MAX_REDIRECTS + 1):
        resp = await client.send(request)
        if not resp.is_redirect:
            return resp
        request = resp.next_request
        if request is None or not is_allowed_image_url(str(request.url)):
            logger.warning(f"Refusing image redirect to: {resp.headers.get('location')}")
            raise RequestError("Failed to fetch image", status_code=502)
    logger.error(f"Too many redirects for: {url}")
    raise RequestError("Failed to fetch image", status_code=502)


@router.get("/image-proxy")
async def image_proxy(
    url: str | None = None,
    transport: httpx.AsyncBaseTransport | None = Depends(get_http_transport),
):
    if not url:
        raise RequestError("Missing 'url' parameter")
    if not is_allowed_image_url(url):
        raise RequestError("Invalid image URL domain")

    logger.info(f"Proxying image request for: {url}")
    try:
        async with httpx.AsyncClient(
            timeout=settings.image_proxy_timeout,
            transport=transport,
            follow_redirects=False,
        ) as client:
            resp = await _fetch(client, url)
    except httpx.TimeoutException:
        logger.error("Image fetch timeout")
        raise RequestError("Image request timed out", status_code=504)
    except httpx.HTTPError as e:
        logger.error(f"Image fetch error: {e}")
        raise RequestError("Failed to fetch image", status_code=502)

    if not resp.is_success:
        logger.error(f"Failed to fetch image: {resp.status_code}")
        raise RequestError("Failed to fetch image", status_code=502)

    return Response(
        content=resp.content,
        media_type=resp.headers.get("content-type", "image/jpeg"),
        headers=CACHE_HEADERS,
    )


@router.options("/image-proxy", include_in_schema=False)
async def image_proxy_options():
    return Response(status_code=204, headers={"Allow": ALLOWED_METHODS})


@router.api_route(
    "/image-proxy",
    methods=["POST", "PUT", "PATCH", "DELETE"],
    include_in_schema=False,
)
async def image_proxy_method_not_allowed():
    raise HTTPException(status_code=405, detail="Method Not Allowed", headers={"Allow": ALLOWED_METHODS})
