from __future__ import annotations

import httpx

from ingest.errors import FetchError


async def fetch_feed(
    client: httpx.AsyncClient,
    *,
    url: str,
    user_agent: str,
    timeout_seconds: float = 15.0,
) -> bytes:
    headers = {
        "User-Agent": user_agent,
        "Accept": "application/rss+xml, application/xml, text/xml, */*",
    }
    timeout = httpx.Timeout(connect=5.0, read=timeout_seconds, write=5.0, pool=5.0)
    try:
        response = await client.get(url, headers=headers, timeout=timeout)
    except httpx.TimeoutException as e:
        raise FetchError(f"timeout:{url}") from e
    except httpx.RequestError as e:
        raise FetchError(f"request_error:{e.__class__.__name__}") from e

    if not response.is_success:
        raise FetchError(f"http_{response.status_code}")
    if not response.content.strip():
        raise FetchError("empty_body")
    return response.content
