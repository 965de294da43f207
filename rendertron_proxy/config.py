"""Configuration handling for the rendertron proxy.

Copyright (C) 2025 Sergey Porfiriev <parf@difive.com>

This program is free software; you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation; either version 2 of the License, or
(at your option) any later version.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from rendertron_proxy.errors import ConfigError
from rendertron_proxy.filter import DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)

# camelCase option names of the upstream Rendertron middleware
CAMEL_CASE_ALIASES = {
    "proxyUrl": "proxy_url",
    "userAgentPattern": "user_agent_pattern",
    "extraBotUserAgents": "extra_bot_user_agents",
    "excludeUrlPattern": "exclude_url_pattern",
    "extraExcludeUrls": "extra_exclude_urls",
    "injectShadyDom": "inject_shady_dom",
    "allowedForwardedHosts": "allowed_forwarded_hosts",
    "forwardedHostHeader": "forwarded_host_header",
}

TRUE_VALUES = ("1", "true", "yes", "on")


def _split_list(value: Optional[str]) -> List[str]:
    """Split a comma separated environment value."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class Config:
    """Configuration container for the proxy server and rendertron filter."""

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 8080,
        target_host: Optional[str] = None,
        origin_timeout: int = 30,
        log_level: str = "INFO",
        proxy_url: Optional[str] = None,
        user_agent_pattern: Optional[str] = None,
        extra_bot_user_agents: Optional[List[str]] = None,
        exclude_url_pattern: Optional[str] = None,
        extra_exclude_urls: Optional[List[str]] = None,
        inject_shady_dom: bool = False,
        timeout: int = DEFAULT_TIMEOUT,
        allowed_forwarded_hosts: Optional[List[str]] = None,
        forwarded_host_header: Optional[str] = None,
    ):
        """Initialize configuration.

        Args:
            host: Host to bind the proxy server to
            port: Port to bind the proxy server to
            target_host: Origin that receives requests not served by the render service
            origin_timeout: Origin request timeout in seconds
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
            proxy_url: Base URL of the Rendertron service
            user_agent_pattern: Regex overriding the built-in crawler pattern
            extra_bot_user_agents: Crawler signatures added to the built-in list
            exclude_url_pattern: Regex overriding the built-in static path pattern
            extra_exclude_urls: File extensions added to the built-in list
            inject_shady_dom: Force web components polyfills in rendered pages
            timeout: Render request timeout in milliseconds
            allowed_forwarded_hosts: Hosts trusted from the forwarded host header
            forwarded_host_header: Header carrying the forwarded host
        """
        self.host = host
        self.port = port
        self.target_host = target_host
        self.origin_timeout = origin_timeout
        self.log_level = log_level
        self.proxy_url = proxy_url
        self.user_agent_pattern = user_agent_pattern
        self.extra_bot_user_agents = extra_bot_user_agents or []
        self.exclude_url_pattern = exclude_url_pattern
        self.extra_exclude_urls = extra_exclude_urls or []
        self.inject_shady_dom = inject_shady_dom
        self.timeout = timeout
        self.allowed_forwarded_hosts = allowed_forwarded_hosts or []
        self.forwarded_host_header = forwarded_host_header

    @classmethod
    def _normalize_keys(cls, data: Dict[str, Any], source: str) -> Dict[str, Any]:
        """Translate camelCase aliases and reject unknown keys.

        Args:
            data: Raw mapping loaded from YAML
            source: Where the mapping came from, for error messages

        Returns:
            Mapping with snake_case keys
        """
        known = set(cls().to_dict())
        normalized = {}

        for key, value in data.items():
            name = CAMEL_CASE_ALIASES.get(key, key)
            if name not in known:
                raise ConfigError(f"Unknown configuration key '{key}' in {source}")
            if name in normalized:
                logger.warning(f"Configuration key '{key}' overrides '{name}' in {source}")
            normalized[name] = value

        return normalized

    @classmethod
    def from_file(cls, config_path: str) -> "Config":
        """Load configuration from YAML file.

        Args:
            config_path: Path to configuration file

        Returns:
            Config instance
        """
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(path) as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Error parsing configuration file {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Configuration file {path} must contain a mapping")

        return cls(**cls._normalize_keys(data, str(path)))

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables.

        Returns:
            Config instance
        """
        return cls(
            host=os.getenv("PROXY_HOST", "0.0.0.0"),
            port=int(os.getenv("PROXY_PORT", "8080")),
            target_host=os.getenv("PROXY_TARGET"),
            origin_timeout=int(os.getenv("PROXY_TIMEOUT", "30")),
            log_level=os.getenv("PROXY_LOG_LEVEL", "INFO"),
            proxy_url=os.getenv("RENDERTRON_URL"),
            user_agent_pattern=os.getenv("RENDERTRON_USER_AGENT_PATTERN"),
            extra_bot_user_agents=_split_list(
                os.getenv("RENDERTRON_EXTRA_BOT_USER_AGENTS")
            ),
            exclude_url_pattern=os.getenv("RENDERTRON_EXCLUDE_URL_PATTERN"),
            extra_exclude_urls=_split_list(os.getenv("RENDERTRON_EXTRA_EXCLUDE_URLS")),
            inject_shady_dom=os.getenv("RENDERTRON_INJECT_SHADY_DOM", "").lower()
            in TRUE_VALUES,
            timeout=int(os.getenv("RENDERTRON_TIMEOUT", str(DEFAULT_TIMEOUT))),
            allowed_forwarded_hosts=_split_list(
                os.getenv("RENDERTRON_ALLOWED_FORWARDED_HOSTS")
            ),
            forwarded_host_header=os.getenv("RENDERTRON_FORWARDED_HOST_HEADER"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary.

        Returns:
            Dictionary representation
        """
        return {
            "host": self.host,
            "port": self.port,
            "target_host": self.target_host,
            "origin_timeout": self.origin_timeout,
            "log_level": self.log_level,
            "proxy_url": self.proxy_url,
            "user_agent_pattern": self.user_agent_pattern,
            "extra_bot_user_agents": self.extra_bot_user_agents,
            "exclude_url_pattern": self.exclude_url_pattern,
            "extra_exclude_urls": self.extra_exclude_urls,
            "inject_shady_dom": self.inject_shady_dom,
            "timeout": self.timeout,
            "allowed_forwarded_hosts": self.allowed_forwarded_hosts,
            "forwarded_host_header": self.forwarded_host_header,
        }
