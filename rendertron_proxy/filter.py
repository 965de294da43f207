"""Crawler detection and render URL construction.

Copyright (C) 2025 Sergey Porfiriev <parf@difive.com>

This program is free software; you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation; either version 2 of the License, or
(at your option) any later version.
"""

import logging
import re
from dataclasses import dataclass
from typing import (
    TYPE_CHECKING,
    FrozenSet,
    Iterable,
    Mapping,
    NamedTuple,
    Optional,
    Tuple,
)
from urllib.parse import quote_plus

from aiohttp import hdrs
from aiohttp.web import Request

from rendertron_proxy.data import BOT_USER_AGENTS, STATIC_FILE_EXTENSIONS
from rendertron_proxy.errors import ConfigError

if TYPE_CHECKING:
    from rendertron_proxy.config import Config

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 11000
DEFAULT_FORWARDED_HOST_HEADER = "X-Forwarded-Host"
SHADY_DOM_QUERY = "?wc-inject-shadydom=true"


def _alternation(items: Iterable[str]) -> str:
    """Join literal items into a regex alternation, dropping duplicates."""
    seen = []
    for item in items:
        if item and item not in seen:
            seen.append(item)
    return "|".join(re.escape(item) for item in seen)


def _string_list(value: Optional[Iterable[str]], option: str) -> Tuple[str, ...]:
    """Validate a list option; a bare string is rejected, not split into characters."""
    if value is None:
        return ()
    if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
        raise ConfigError(f"{option} must be a list of strings, got {value!r}")
    items = tuple(value)
    for item in items:
        if not isinstance(item, str):
            raise ConfigError(f"{option} must contain only strings, got {item!r}")
    return items


def _timeout_ms(value: Optional[float]) -> float:
    """Validate the render timeout in milliseconds; 0 or None means the default."""
    if value is None:
        return DEFAULT_TIMEOUT
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"timeout must be a number of milliseconds, got {value!r}")
    if value == 0:
        return DEFAULT_TIMEOUT
    if value < 1:
        raise ConfigError(f"timeout must be at least 1 ms, got {value}")
    return value


def _compile(pattern: str, option: str) -> "re.Pattern[str]":
    try:
        return re.compile(pattern, re.IGNORECASE)
    except (re.error, TypeError) as e:
        raise ConfigError(f"Invalid {option} {pattern!r}: {e}") from e


@dataclass(frozen=True)
class FilterConfig:
    """Compiled, read-only filter configuration.

    Built once at setup time with :meth:`build` and shared by every request.
    """

    proxy_url: str
    crawler_pattern: "re.Pattern[str]"
    excluded_path_pattern: "re.Pattern[str]"
    inject_shady_dom: bool = False
    timeout: float = DEFAULT_TIMEOUT
    allowed_forwarded_hosts: FrozenSet[str] = frozenset()
    forwarded_host_header: str = ""

    @classmethod
    def build(
        cls,
        proxy_url: Optional[str],
        user_agent_pattern: Optional[str] = None,
        extra_bot_user_agents: Iterable[str] = (),
        exclude_url_pattern: Optional[str] = None,
        extra_exclude_urls: Iterable[str] = (),
        inject_shady_dom: bool = False,
        timeout: Optional[float] = DEFAULT_TIMEOUT,
        allowed_forwarded_hosts: Iterable[str] = (),
        forwarded_host_header: Optional[str] = None,
    ) -> "FilterConfig":
        """Merge user options with the default tables and compile patterns.

        Args:
            proxy_url: Base URL of the Rendertron service (required)
            user_agent_pattern: Regex replacing the default crawler pattern
            extra_bot_user_agents: Signatures added to the built-in ones
            exclude_url_pattern: Regex replacing the default path exclusion
            extra_exclude_urls: File extensions added to the built-in ones
            inject_shady_dom: Ask the render service to load web component polyfills
            timeout: Render request timeout in milliseconds (0 or None means default)
            allowed_forwarded_hosts: Hosts trusted from the forwarded host header
            forwarded_host_header: Header carrying the forwarded host

        Returns:
            FilterConfig instance

        Raises:
            ConfigError: if proxy_url is missing, a list option is not a list
                of strings, timeout is not a number of at least 1 ms or a
                pattern does not compile
        """
        if not proxy_url:
            raise ConfigError("Must set proxy_url")
        if not isinstance(proxy_url, str):
            raise ConfigError(f"proxy_url must be a string, got {proxy_url!r}")

        if not proxy_url.endswith("/"):
            proxy_url += "/"

        extra_bot_user_agents = _string_list(extra_bot_user_agents, "extra_bot_user_agents")
        extra_exclude_urls = _string_list(extra_exclude_urls, "extra_exclude_urls")
        allowed = frozenset(
            _string_list(allowed_forwarded_hosts, "allowed_forwarded_hosts")
        )

        if not user_agent_pattern:
            user_agent_pattern = _alternation([*BOT_USER_AGENTS, *extra_bot_user_agents])

        if not exclude_url_pattern:
            extensions = _alternation([*STATIC_FILE_EXTENSIONS, *extra_exclude_urls])
            exclude_url_pattern = f"\\.({extensions})$"

        timeout = _timeout_ms(timeout)

        if not allowed:
            header = ""
        else:
            header = forwarded_host_header or DEFAULT_FORWARDED_HOST_HEADER

        return cls(
            proxy_url=proxy_url,
            crawler_pattern=_compile(user_agent_pattern, "user_agent_pattern"),
            excluded_path_pattern=_compile(exclude_url_pattern, "exclude_url_pattern"),
            inject_shady_dom=bool(inject_shady_dom),
            timeout=timeout,
            allowed_forwarded_hosts=allowed,
            forwarded_host_header=header,
        )

    @classmethod
    def from_config(cls, config: "Config") -> "FilterConfig":
        """Build the filter configuration from a loaded Config."""
        return cls.build(
            proxy_url=config.proxy_url,
            user_agent_pattern=config.user_agent_pattern,
            extra_bot_user_agents=config.extra_bot_user_agents,
            exclude_url_pattern=config.exclude_url_pattern,
            extra_exclude_urls=config.extra_exclude_urls,
            inject_shady_dom=config.inject_shady_dom,
            timeout=config.timeout,
            allowed_forwarded_hosts=config.allowed_forwarded_hosts,
            forwarded_host_header=config.forwarded_host_header,
        )


class RenderDecision(NamedTuple):
    """Outcome of inspecting one request."""

    eligible: bool
    render_url: Optional[str] = None


def is_crawler_request(config: FilterConfig, user_agent: str, path: str) -> bool:
    """Check whether a request should be answered with a rendered snapshot.

    Args:
        config: Filter configuration
        user_agent: Raw User-Agent header value
        path: Raw (still percent-encoded) request path without query string

    Returns:
        True if the user agent is a known crawler and the path is not a static asset
    """
    if not user_agent:
        return False
    if not config.crawler_pattern.search(user_agent):
        return False
    return not config.excluded_path_pattern.search(path)


def resolve_host(
    config: FilterConfig, declared_host: str, headers: Mapping[str, str]
) -> str:
    """Pick the host the render service should request.

    The forwarded host header is honoured only when its value is allow-listed.
    """
    if not config.forwarded_host_header:
        return declared_host

    forwarded_host = headers.get(config.forwarded_host_header, "")
    if forwarded_host and forwarded_host in config.allowed_forwarded_hosts:
        return forwarded_host

    if forwarded_host:
        logger.debug(f"Ignoring untrusted forwarded host: {forwarded_host}")
    return declared_host


def build_incoming_url(scheme: str, host: str, path_qs: str) -> str:
    """Rebuild the absolute URL the client requested."""
    return f"{scheme}://{host}{path_qs}"


def build_render_url(config: FilterConfig, incoming_url: str) -> str:
    """Build the render service URL for an absolute page URL."""
    render_url = config.proxy_url + quote_plus(incoming_url, safe="")
    if config.inject_shady_dom:
        render_url += SHADY_DOM_QUERY
    return render_url


def decide(config: FilterConfig, request: Request) -> RenderDecision:
    """Run crawler detection and URL construction for an aiohttp request."""
    user_agent = request.headers.get(hdrs.USER_AGENT, "")

    # Matched undecoded: /logo%2Epng is not a static asset
    if not is_crawler_request(config, user_agent, request.rel_url.raw_path):
        return RenderDecision(eligible=False)

    host = resolve_host(config, request.host, request.headers)
    incoming_url = build_incoming_url(request.scheme, host, request.raw_path)
    return RenderDecision(eligible=True, render_url=build_render_url(config, incoming_url))
