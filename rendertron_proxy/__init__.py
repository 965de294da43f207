"""Serve pre-rendered HTML to crawlers through a Rendertron service.

Copyright (C) 2025 Sergey Porfiriev <parf@difive.com>

This program is free software; you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation; either version 2 of the License, or
(at your option) any later version.
"""

from rendertron_proxy.errors import (
    ConfigError,
    RenderError,
    RendertronError,
    RenderTimeoutError,
)
from rendertron_proxy.filter import FilterConfig, RenderDecision
from rendertron_proxy.middleware import RendertronFilter, rendertron_middleware, setup

__all__ = [
    "ConfigError",
    "FilterConfig",
    "RenderDecision",
    "RenderError",
    "RenderTimeoutError",
    "RendertronError",
    "RendertronFilter",
    "rendertron_middleware",
    "setup",
]
