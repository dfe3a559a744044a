# reachability.py
# author: Andrew Kingdom, Copyright(C)2025, All rights reserved, MIT License (CC-BY).
"""
Pre-flight domain reachability check for global servers.

There is no use in starting a global server if its domains do not actually
reach this machine (a typo, DNS that has not propagated, another site on the
same name). A tiny verifier answers a known message on port 80 and every
domain is fetched over plain HTTP; anything other than that exact message
stops the server before it binds.
"""

import logging
from typing import Iterable, Optional

import httpx
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import PlainTextResponse
from starlette.routing import Route

from .errors import DomainNetworkError, ListenerError, UnexpectedResponseError
from .listener import Listener

REACHABILITY_MESSAGE = "place-domain-is-reachable"
PREVIEW_LIMIT = 100
DEFAULT_TIMEOUT = 10.0


async def _verify(request: Request) -> PlainTextResponse:
    return PlainTextResponse(REACHABILITY_MESSAGE)


def create_verifier(host: str = "0.0.0.0", port: int = 80) -> Listener:
    app = Starlette(routes=[Route("/{path:path}", _verify)])
    return Listener(app, host=host, port=port)


def response_preview(body: str) -> str:
    """A short, log-safe description of an unexpected response body."""
    looks_like_html = "html" in body.lower()
    if len(body) > PREVIEW_LIMIT:
        if looks_like_html:
            return "response looks like HTML and is too long to show"
        return "response is too long to show"
    if looks_like_html:
        return f"looks like HTML: {body}"
    return body


async def check_domain(client: httpx.AsyncClient, domain: str) -> None:
    logging.info("✨ Attempting to reach domain %s…", domain)
    try:
        response = await client.get(f"http://{domain}/")
    except httpx.HTTPError as e:
        raise DomainNetworkError(domain, str(e) or type(e).__name__) from e
    if response.status_code != 200:
        raise DomainNetworkError(domain, f"HTTP status {response.status_code}")
    if response.text != REACHABILITY_MESSAGE:
        # Most likely another site is already answering at this domain.
        raise UnexpectedResponseError(domain, response_preview(response.text))
    logging.info("💖 %s is reachable.", domain)


async def ensure_domains_are_reachable(domains: Iterable[str], port: int = 80, host: str = "0.0.0.0",
                                       timeout: float = DEFAULT_TIMEOUT,
                                       transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
    """Raise DomainUnreachableError for the first domain that does not reach us.

    Domains are checked in order. The verifier is always stopped before this
    returns or raises.
    """
    logging.info("🧚 Ensuring domains are reachable before starting global server.")
    verifier = create_verifier(host=host, port=port)
    try:
        await verifier.listen()
    except ListenerError as e:
        raise ListenerError(f"Pre-flight domain reachability server could not be started ({e.message})") from e
    logging.info("✨ Pre-flight domain reachability check server started.")

    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport, follow_redirects=False) as client:
            for domain in domains:
                await check_domain(client, domain)
    finally:
        verifier.destroy()
        await verifier.wait_closed()
        logging.info("✨ Pre-flight domain reachability check server stopped.")
