"""aiohttp middleware serving rendered snapshots to crawlers.

Copyright (C) 2025 Sergey Porfiriev <parf@difive.com>

This program is free software; you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation; either version 2 of the License, or
(at your option) any later version.
"""

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, Optional

import aiohttp
from aiohttp import ClientSession, ClientTimeout, web
from aiohttp.web import Request, StreamResponse
from yarl import URL

from rendertron_proxy.errors import RenderError, RenderTimeoutError
from rendertron_proxy.filter import FilterConfig, decide

logger = logging.getLogger(__name__)

Handler = Callable[[Request], Awaitable[StreamResponse]]


class RendertronFilter:
    """Detects crawler requests and answers them from the render service."""

    def __init__(self, config: FilterConfig, session: Optional[ClientSession] = None):
        """Initialize the filter.

        Args:
            config: Compiled filter configuration
            session: Client session to reuse; when omitted one is created by start()
        """
        self.config = config
        self.timeout = ClientTimeout(total=config.timeout / 1000)
        self.session = session
        self._owns_session = session is None

    async def start(self):
        """Open the client session used for render requests."""
        if self.session is None:
            self.session = ClientSession(timeout=self.timeout)
            self._owns_session = True
        logger.info(f"Rendertron filter using {self.config.proxy_url}")

    async def close(self):
        """Close the client session if this filter created it."""
        if self.session is not None and self._owns_session:
            await self.session.close()
            self.session = None

    async def fetch(self, render_url: str) -> bytes:
        """Fetch a rendered page.

        The upstream status code is not interpreted: whatever body the render
        service returns is the snapshot.

        Args:
            render_url: Render service URL built for the request

        Returns:
            Response body bytes

        Raises:
            RenderTimeoutError: if the render service does not answer in time
            RenderError: on connection or body read failures
        """
        if self.session is None:
            await self.start()

        try:
            # Already escaped, send as-is
            url = URL(render_url, encoded=True)
            async with self.session.get(url, timeout=self.timeout) as resp:
                body = await resp.read()
        except asyncio.TimeoutError as e:
            logger.error(f"Render request timeout: {render_url}")
            raise RenderTimeoutError(
                f"Render service timed out after {self.config.timeout} ms", render_url
            ) from e
        except aiohttp.ClientError as e:
            logger.error(f"Render request failed: {render_url}: {e}")
            raise RenderError(f"Render service request failed: {e}", render_url) from e

        if resp.status != 200:
            logger.warning(
                f"Render service answered {resp.status} for {render_url}, serving body anyway"
            )
        logger.debug(f"Rendered {render_url} ({len(body)} bytes)")
        return body

    async def handle(self, request: Request, handler: Handler) -> StreamResponse:
        """Serve a rendered snapshot to crawlers, pass everything else through."""
        decision = decide(self.config, request)
        if not decision.eligible:
            return await handler(request)

        logger.info(f"Rendering {request.path} for crawler via {decision.render_url}")
        body = await self.fetch(decision.render_url)
        return web.Response(body=body, status=200, content_type="text/html")


def rendertron_middleware(rendertron_filter: RendertronFilter):
    """Wrap a RendertronFilter as an aiohttp middleware.

    Example:
        app = web.Application(middlewares=[rendertron_middleware(rendertron_filter)])
    """

    @web.middleware
    async def middleware(request: Request, handler: Handler) -> StreamResponse:
        return await rendertron_filter.handle(request, handler)

    return middleware


def setup(
    app: web.Application,
    config: FilterConfig,
    session: Optional[ClientSession] = None,
) -> RendertronFilter:
    """Install the rendertron middleware on an application.

    The client session is opened on startup and closed on cleanup.

    Args:
        app: aiohttp application (not yet frozen)
        config: Compiled filter configuration
        session: Optional client session to share

    Returns:
        The installed RendertronFilter
    """
    rendertron_filter = RendertronFilter(config, session=session)

    async def session_ctx(app: web.Application) -> AsyncIterator[None]:
        await rendertron_filter.start()
        yield
        await rendertron_filter.close()

    app.cleanup_ctx.append(session_ctx)
    app.middlewares.append(rendertron_middleware(rendertron_filter))
    return rendertron_filter
