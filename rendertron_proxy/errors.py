"""Exceptions raised by the rendertron filter.

Copyright (C) 2025 Sergey Porfiriev <parf@difive.com>

This program is free software; you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation; either version 2 of the License, or
(at your option) any later version.
"""


class RendertronError(Exception):
    """Base class for all rendertron_proxy errors."""


class ConfigError(RendertronError, ValueError):
    """Invalid filter configuration. Raised at setup, never per request."""


class RenderError(RendertronError):
    """The render service could not be reached or its body could not be read."""

    def __init__(self, message: str, render_url: str):
        super().__init__(message)
        self.render_url = render_url


class RenderTimeoutError(RenderError):
    """The render service did not answer within the configured timeout."""
