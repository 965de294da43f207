"""Reverse proxy server fronting an origin with the rendertron filter."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from aiohttp import ClientSession, ClientTimeout, web
from aiohttp.web import Request, StreamResponse

from rendertron_proxy.config import Config
from rendertron_proxy.errors import RenderError, RenderTimeoutError
from rendertron_proxy.filter import FilterConfig
from rendertron_proxy.middleware import setup

logger = logging.getLogger(__name__)

# Hop-by-hop and encoding headers not relayed from the origin
SKIPPED_RESPONSE_HEADERS = ("transfer-encoding", "content-encoding", "content-length")


@web.middleware
async def error_middleware(
    request: Request, handler: Callable[[Request], Awaitable[StreamResponse]]
) -> StreamResponse:
    """Turn render failures into gateway errors."""
    try:
        return await handler(request)
    except RenderTimeoutError as e:
        logger.error(f"Render timeout for {request.path}: {e}")
        return web.Response(text="Render service timeout", status=504)
    except RenderError as e:
        logger.error(f"Render error for {request.path}: {e}", exc_info=True)
        return web.Response(text=f"Render service error: {e}", status=502)


class ProxyServer:
    """HTTP reverse proxy that serves rendered pages to crawlers."""

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 8080,
        target_host: Optional[str] = None,
        timeout: int = 30,
        filter_config: Optional[FilterConfig] = None,
    ):
        """Initialize proxy server.

        Args:
            host: Host to bind the proxy server to
            port: Port to bind the proxy server to
            target_host: Origin receiving all requests that are not rendered
            timeout: Origin request timeout in seconds
            filter_config: Rendertron filter configuration; no filtering when omitted
        """
        self.host = host
        self.port = port
        self.target_host = target_host
        self.timeout = ClientTimeout(total=timeout)
        self.app = web.Application(middlewares=[error_middleware])
        self.rendertron_filter = None
        if filter_config is not None:
            self.rendertron_filter = setup(self.app, filter_config)
        self.app.router.add_route("*", "/{path:.*}", self.handle_request)
        self.session: Optional[ClientSession] = None
        self.runner: Optional[web.AppRunner] = None

    @classmethod
    def from_config(cls, config: Config) -> "ProxyServer":
        """Create a proxy server from configuration.

        Raises:
            ConfigError: if the rendertron options are invalid
        """
        return cls(
            host=config.host,
            port=config.port,
            target_host=config.target_host,
            timeout=config.origin_timeout,
            filter_config=FilterConfig.from_config(config),
        )

    async def start(self):
        """Start the proxy server."""
        self.session = ClientSession(timeout=self.timeout)
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, self.host, self.port)
        await site.start()
        logger.info(f"Proxy server started on {self.host}:{self.port}")
        if self.target_host:
            logger.info(f"Origin: {self.target_host}")

    async def stop(self):
        """Stop the proxy server."""
        if self.runner:
            await self.runner.cleanup()
        if self.session:
            await self.session.close()
        logger.info("Proxy server stopped")

    async def handle_request(self, request: Request) -> StreamResponse:
        """Forward a request that was not rendered to the origin.

        Args:
            request: Incoming HTTP request

        Returns:
            HTTP response
        """
        if not self.target_host:
            return web.Response(
                text="No target host specified. Configure target_host to proxy requests.",
                status=400,
            )

        target_url = f"{self.target_host.rstrip('/')}{request.raw_path}"

        headers = dict(request.headers)
        # Host header is set by aiohttp from the target URL
        headers.pop("Host", None)

        try:
            async with self.session.request(
                method=request.method,
                url=target_url,
                headers=headers,
                data=await request.read(),
            ) as resp:
                response_body = await resp.read()
                headers = {
                    k: v
                    for k, v in resp.headers.items()
                    if k.lower() not in SKIPPED_RESPONSE_HEADERS
                }
                return web.Response(body=response_body, status=resp.status, headers=headers)

        except asyncio.TimeoutError:
            logger.error(f"Request timeout: {target_url}")
            return web.Response(text="Request timeout", status=504)
        except Exception as e:
            logger.error(f"Proxy error: {e}", exc_info=True)
            return web.Response(text=f"Proxy error: {e}", status=502)

    async def run(self):
        """Run the proxy server indefinitely."""
        await self.start()
        try:
            await asyncio.Event().wait()
        except KeyboardInterrupt:
            logger.info("Shutting down...")
        finally:
            await self.stop()
