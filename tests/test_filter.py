"""Tests for crawler detection, host resolution and render URLs."""

import pytest
from aiohttp.test_utils import make_mocked_request
from multidict import CIMultiDict

from rendertron_proxy.data import BOT_USER_AGENTS, STATIC_FILE_EXTENSIONS
from rendertron_proxy.errors import ConfigError
from rendertron_proxy.filter import (
    DEFAULT_FORWARDED_HOST_HEADER,
    DEFAULT_TIMEOUT,
    FilterConfig,
    RenderDecision,
    build_incoming_url,
    build_render_url,
    decide,
    is_crawler_request,
    resolve_host,
)

PROXY_URL = "https://render.example/render/"
SLACKBOT = "Slackbot-LinkExpanding 1.0 (+https://api.slack.com/robots)"
BROWSER = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 Chrome/120.0 Safari/537.36"


@pytest.fixture
def config():
    """Filter configuration with defaults."""
    return FilterConfig.build(proxy_url=PROXY_URL)


def test_build_requires_proxy_url():
    """Test missing proxy URL fails at setup."""
    with pytest.raises(ConfigError):
        FilterConfig.build(proxy_url="")
    with pytest.raises(ConfigError):
        FilterConfig.build(proxy_url=None)


def test_build_normalizes_proxy_url():
    """Test a trailing slash is added to the proxy URL."""
    config = FilterConfig.build(proxy_url="https://render.example/render")
    assert config.proxy_url == "https://render.example/render/"


def test_build_defaults(config):
    """Test default option values."""
    assert config.inject_shady_dom is False
    assert config.timeout == DEFAULT_TIMEOUT == 11000
    assert config.allowed_forwarded_hosts == frozenset()
    assert config.forwarded_host_header == ""


def test_build_zero_timeout_uses_default():
    """Test a zero timeout falls back to the default."""
    assert FilterConfig.build(proxy_url=PROXY_URL, timeout=0).timeout == DEFAULT_TIMEOUT


def test_build_negative_timeout_rejected():
    """Test a negative timeout fails at setup."""
    with pytest.raises(ConfigError):
        FilterConfig.build(proxy_url=PROXY_URL, timeout=-5)


def test_build_invalid_pattern_rejected():
    """Test malformed override patterns fail at setup."""
    with pytest.raises(ConfigError, match="user_agent_pattern"):
        FilterConfig.build(proxy_url=PROXY_URL, user_agent_pattern="bot(")
    with pytest.raises(ConfigError, match="exclude_url_pattern"):
        FilterConfig.build(proxy_url=PROXY_URL, exclude_url_pattern="[a-")


def test_config_is_immutable(config):
    """Test the built configuration cannot be changed."""
    with pytest.raises(AttributeError):
        config.proxy_url = "https://other.example/"


def test_forwarded_header_defaults_when_hosts_allowed():
    """Test the forwarded host header is enabled only with an allow-list."""
    config = FilterConfig.build(proxy_url=PROXY_URL, forwarded_host_header="X-Real-Host")
    assert config.forwarded_host_header == ""

    config = FilterConfig.build(proxy_url=PROXY_URL, allowed_forwarded_hosts=["example.com"])
    assert config.forwarded_host_header == DEFAULT_FORWARDED_HOST_HEADER

    config = FilterConfig.build(
        proxy_url=PROXY_URL,
        allowed_forwarded_hosts=["example.com"],
        forwarded_host_header="X-Real-Host",
    )
    assert config.forwarded_host_header == "X-Real-Host"


@pytest.mark.parametrize("signature", BOT_USER_AGENTS)
def test_default_crawlers_are_eligible(config, signature):
    """Test every built-in signature is detected inside a user agent."""
    user_agent = f"Mozilla/5.0 (compatible; {signature}/2.1)"
    assert is_crawler_request(config, user_agent, "/blog/post")


def test_crawler_matching_is_case_insensitive(config):
    """Test signatures match regardless of case."""
    assert is_crawler_request(config, "TWITTERBOT/1.0", "/")
    assert is_crawler_request(config, "Mozilla/5.0 (compatible; BingBot/2.0)", "/")


def test_browser_not_eligible(config):
    """Test regular browsers pass through."""
    assert not is_crawler_request(config, BROWSER, "/")


def test_empty_user_agent_never_eligible():
    """Test an empty user agent is rejected even by a match-anything pattern."""
    config = FilterConfig.build(proxy_url=PROXY_URL, user_agent_pattern=".*")
    assert not is_crawler_request(config, "", "/")
    assert not is_crawler_request(config, "", "/page.html")


@pytest.mark.parametrize("extension", STATIC_FILE_EXTENSIONS)
def test_static_assets_not_eligible(config, extension):
    """Test static assets are never rendered, even for crawlers."""
    assert not is_crawler_request(config, SLACKBOT, f"/assets/file.{extension}")


def test_static_extension_match_is_case_insensitive(config):
    """Test extension matching ignores case."""
    assert not is_crawler_request(config, SLACKBOT, "/images/LOGO.PNG")


def test_extension_must_be_suffix(config):
    """Test extensions only match at the end of the path."""
    assert is_crawler_request(config, SLACKBOT, "/png/gallery")
    assert is_crawler_request(config, SLACKBOT, "/styles.css/preview")


def test_extra_bot_user_agents():
    """Test extra signatures extend the built-in list."""
    config = FilterConfig.build(proxy_url=PROXY_URL, extra_bot_user_agents=["googlebot"])
    assert is_crawler_request(config, "Mozilla/5.0 (compatible; Googlebot/2.1)", "/")
    assert is_crawler_request(config, SLACKBOT, "/")


def test_extra_bot_user_agents_are_literal():
    """Test extra signatures are matched literally, not as regex."""
    config = FilterConfig.build(proxy_url=PROXY_URL, extra_bot_user_agents=["my.bot+"])
    assert is_crawler_request(config, "my.bot+/1.0", "/")
    assert not is_crawler_request(config, "myXbot/1.0", "/")
    assert not is_crawler_request(config, "my.bottt/1.0", "/")


def test_user_agent_pattern_overrides_defaults():
    """Test a full override replaces the built-in signatures and extras."""
    config = FilterConfig.build(
        proxy_url=PROXY_URL,
        user_agent_pattern="curl|wget",
        extra_bot_user_agents=["googlebot"],
    )
    assert is_crawler_request(config, "curl/8.4.0", "/")
    assert not is_crawler_request(config, SLACKBOT, "/")
    assert not is_crawler_request(config, "Googlebot/2.1", "/")


def test_extra_exclude_urls():
    """Test extra extensions extend the built-in list."""
    config = FilterConfig.build(proxy_url=PROXY_URL, extra_exclude_urls=["json", "webp"])
    assert not is_crawler_request(config, SLACKBOT, "/data.json")
    assert not is_crawler_request(config, SLACKBOT, "/image.webp")
    assert not is_crawler_request(config, SLACKBOT, "/style.css")
    assert is_crawler_request(config, SLACKBOT, "/page.html")


def test_exclude_url_pattern_overrides_defaults():
    """Test a full override replaces the built-in extensions."""
    config = FilterConfig.build(proxy_url=PROXY_URL, exclude_url_pattern="^/api/")
    assert not is_crawler_request(config, SLACKBOT, "/api/items")
    assert is_crawler_request(config, SLACKBOT, "/logo.png")


def test_resolve_host_without_allow_list(config):
    """Test forwarded host is ignored when no hosts are allowed."""
    headers = CIMultiDict({"X-Forwarded-Host": "example.com"})
    assert resolve_host(config, "internal.local", headers) == "internal.local"


def test_resolve_host_allowed_forwarded_host():
    """Test an allow-listed forwarded host is used."""
    config = FilterConfig.build(proxy_url=PROXY_URL, allowed_forwarded_hosts=["example.com"])
    headers = CIMultiDict({"X-Forwarded-Host": "example.com"})
    assert resolve_host(config, "internal.local", headers) == "example.com"


def test_resolve_host_rejects_unlisted_forwarded_host():
    """Test a forwarded host outside the allow-list is ignored."""
    config = FilterConfig.build(proxy_url=PROXY_URL, allowed_forwarded_hosts=["example.com"])
    headers = CIMultiDict({"X-Forwarded-Host": "evil.com"})
    assert resolve_host(config, "internal.local", headers) == "internal.local"


def test_resolve_host_missing_or_empty_header():
    """Test a missing or empty forwarded host falls back to the declared host."""
    config = FilterConfig.build(proxy_url=PROXY_URL, allowed_forwarded_hosts=["example.com"])
    assert resolve_host(config, "internal.local", CIMultiDict()) == "internal.local"
    headers = CIMultiDict({"X-Forwarded-Host": ""})
    assert resolve_host(config, "internal.local", headers) == "internal.local"


def test_resolve_host_exact_match_only():
    """Test allow-list membership is an exact string comparison."""
    config = FilterConfig.build(proxy_url=PROXY_URL, allowed_forwarded_hosts=["example.com"])
    for value in ("Example.com", "example.com:443", "sub.example.com"):
        headers = CIMultiDict({"X-Forwarded-Host": value})
        assert resolve_host(config, "internal.local", headers) == "internal.local"


def test_resolve_host_custom_header():
    """Test a custom forwarded host header is read case-insensitively."""
    config = FilterConfig.build(
        proxy_url=PROXY_URL,
        allowed_forwarded_hosts=["example.com"],
        forwarded_host_header="X-Original-Host",
    )
    headers = CIMultiDict({"x-original-host": "example.com", "X-Forwarded-Host": "evil.com"})
    assert resolve_host(config, "internal.local", headers) == "example.com"


def test_build_render_url(config):
    """Test the page URL is escaped into the render service URL."""
    incoming_url = build_incoming_url("https", "example.com", "/a?b=1")
    assert incoming_url == "https://example.com/a?b=1"
    assert (
        build_render_url(config, incoming_url)
        == "https://render.example/render/https%3A%2F%2Fexample.com%2Fa%3Fb%3D1"
    )


def test_build_render_url_with_shady_dom():
    """Test the polyfill flag is appended after the escaped URL."""
    config = FilterConfig.build(proxy_url=PROXY_URL, inject_shady_dom=True)
    render_url = build_render_url(config, "https://example.com/a?b=1")
    assert render_url == (
        "https://render.example/render/https%3A%2F%2Fexample.com%2Fa%3Fb%3D1"
        "?wc-inject-shadydom=true"
    )


def test_build_render_url_escaping(config):
    """Test spaces, reserved and non-ASCII characters are escaped."""
    render_url = build_render_url(config, "http://example.com/a b/é?x=1&y=~_-.")
    assert render_url == (
        PROXY_URL + "http%3A%2F%2Fexample.com%2Fa+b%2F%C3%A9%3Fx%3D1%26y%3D~_-."
    )


def test_decide_crawler_request(config):
    """Test decision for an eligible aiohttp request."""
    request = make_mocked_request(
        "GET", "/a?b=1", headers={"User-Agent": SLACKBOT, "Host": "example.com"}
    ).clone(scheme="https")

    decision = decide(config, request)

    assert decision == RenderDecision(
        eligible=True,
        render_url="https://render.example/render/https%3A%2F%2Fexample.com%2Fa%3Fb%3D1",
    )


def test_decide_uses_forwarded_host():
    """Test decision embeds the allow-listed forwarded host."""
    config = FilterConfig.build(proxy_url=PROXY_URL, allowed_forwarded_hosts=["example.com"])
    request = make_mocked_request(
        "GET",
        "/page",
        headers={
            "User-Agent": SLACKBOT,
            "Host": "internal.local",
            "X-Forwarded-Host": "example.com",
        },
    )

    decision = decide(config, request)

    assert decision.eligible
    assert decision.render_url == PROXY_URL + "http%3A%2F%2Fexample.com%2Fpage"


def test_decide_browser_request(config):
    """Test browsers produce no render URL."""
    request = make_mocked_request(
        "GET", "/", headers={"User-Agent": BROWSER, "Host": "example.com"}
    )
    assert decide(config, request) == RenderDecision(eligible=False)


def test_decide_static_asset_ignores_query(config):
    """Test the exclusion pattern is applied to the path without query string."""
    request = make_mocked_request(
        "GET", "/logo.png?v=3", headers={"User-Agent": SLACKBOT, "Host": "example.com"}
    )
    assert not decide(config, request).eligible


@pytest.mark.parametrize(
    "option", ["extra_bot_user_agents", "extra_exclude_urls", "allowed_forwarded_hosts"]
)
def test_build_rejects_bare_string_list_option(option):
    """Test a single string is not split into one entry per character."""
    with pytest.raises(ConfigError, match=option):
        FilterConfig.build(proxy_url=PROXY_URL, **{option: "example.com"})


@pytest.mark.parametrize(
    "option", ["extra_bot_user_agents", "extra_exclude_urls", "allowed_forwarded_hosts"]
)
def test_build_rejects_non_string_list_items(option):
    """Test list options must hold strings only."""
    with pytest.raises(ConfigError, match=option):
        FilterConfig.build(proxy_url=PROXY_URL, **{option: ["ok", 42]})
    with pytest.raises(ConfigError, match=option):
        FilterConfig.build(proxy_url=PROXY_URL, **{option: 42})


def test_build_accepts_tuple_and_set_list_options():
    """Test any iterable of strings is accepted for list options."""
    config = FilterConfig.build(
        proxy_url=PROXY_URL,
        extra_bot_user_agents=("googlebot",),
        allowed_forwarded_hosts={"example.com"},
    )
    assert is_crawler_request(config, "Googlebot/2.1", "/")
    assert config.allowed_forwarded_hosts == frozenset({"example.com"})


@pytest.mark.parametrize("timeout", ["5000", True, [5000]])
def test_build_rejects_non_numeric_timeout(timeout):
    """Test a non-numeric timeout is a configuration error."""
    with pytest.raises(ConfigError, match="timeout"):
        FilterConfig.build(proxy_url=PROXY_URL, timeout=timeout)


@pytest.mark.parametrize("timeout", [0.5, 0.001, -0.5])
def test_build_rejects_sub_millisecond_timeout(timeout):
    """Test a timeout that would round to no timeout at all is rejected."""
    with pytest.raises(ConfigError, match="timeout"):
        FilterConfig.build(proxy_url=PROXY_URL, timeout=timeout)


def test_build_keeps_fractional_timeout():
    """Test fractional millisecond timeouts are kept, not truncated."""
    assert FilterConfig.build(proxy_url=PROXY_URL, timeout=1.5).timeout == 1.5
    assert FilterConfig.build(proxy_url=PROXY_URL, timeout=None).timeout == DEFAULT_TIMEOUT


def test_build_rejects_non_string_proxy_url():
    """Test a non-string proxy URL fails at setup."""
    with pytest.raises(ConfigError, match="proxy_url"):
        FilterConfig.build(proxy_url=8080)


def test_build_rejects_non_string_pattern():
    """Test a non-string override pattern fails at setup."""
    with pytest.raises(ConfigError, match="user_agent_pattern"):
        FilterConfig.build(proxy_url=PROXY_URL, user_agent_pattern=["curl"])


def test_encoded_static_extension_is_not_excluded(config):
    """Test the exclusion pattern sees the undecoded path."""
    assert is_crawler_request(config, SLACKBOT, "/logo%2Epng")
    assert not is_crawler_request(config, SLACKBOT, "/logo.png")
