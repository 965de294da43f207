"""Command-line interface for rendertron-proxy.

Copyright (C) 2025 Sergey Porfiriev <parf@difive.com>

This program is free software; you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation; either version 2 of the License, or
(at your option) any later version.
"""

import argparse
import asyncio
import logging
import sys

from rendertron_proxy.config import Config
from rendertron_proxy.errors import ConfigError
from rendertron_proxy.proxy import ProxyServer


def setup_logging(level: str):
    """Set up logging configuration.

    Args:
        level: Logging level string (DEBUG, INFO, WARNING, ERROR)
    """
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        description="Rendertron Proxy - serve pre-rendered pages to crawlers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Front an origin, rendering crawler requests through Rendertron
  rendertron-proxy --target http://localhost:3000 \\
      --proxy-url https://render.example.com/render

  # Trust X-Forwarded-Host for the public hostname
  rendertron-proxy --target http://localhost:3000 \\
      --proxy-url https://render.example.com/render \\
      --allowed-forwarded-host www.example.com

  # Load configuration from file
  rendertron-proxy --config config.yaml

  # Use environment variables
  export PROXY_TARGET=http://localhost:3000
  export RENDERTRON_URL=https://render.example.com/render
  rendertron-proxy
        """,
    )

    parser.add_argument(
        "--host",
        type=str,
        help="Host to bind the proxy server to (default: 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        help="Port to bind the proxy server to (default: 8080)",
    )
    parser.add_argument(
        "--target",
        type=str,
        help="Origin receiving requests that are not rendered (e.g., http://localhost:3000)",
    )
    parser.add_argument(
        "--proxy-url",
        type=str,
        help="Base URL of the Rendertron render service",
    )
    parser.add_argument(
        "--timeout",
        type=int,
        help="Render request timeout in milliseconds (default: 11000)",
    )
    parser.add_argument(
        "--inject-shady-dom",
        action="store_true",
        default=None,
        help="Force web components polyfills in rendered pages",
    )
    parser.add_argument(
        "--allowed-forwarded-host",
        action="append",
        dest="allowed_forwarded_hosts",
        metavar="HOST",
        help="Host trusted from the forwarded host header (repeatable)",
    )
    parser.add_argument(
        "--forwarded-host-header",
        type=str,
        help="Header carrying the forwarded host (default: X-Forwarded-Host)",
    )
    parser.add_argument(
        "--config",
        type=str,
        help="Path to YAML configuration file",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    return parser


def load_config(args: argparse.Namespace) -> Config:
    """Load configuration from file or environment and apply CLI overrides."""
    if args.config:
        config = Config.from_file(args.config)
    else:
        config = Config.from_env()

    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port
    if args.target:
        config.target_host = args.target
    if args.proxy_url:
        config.proxy_url = args.proxy_url
    if args.timeout:
        config.timeout = args.timeout
    if args.inject_shady_dom:
        config.inject_shady_dom = True
    if args.allowed_forwarded_hosts:
        config.allowed_forwarded_hosts = args.allowed_forwarded_hosts
    if args.forwarded_host_header:
        config.forwarded_host_header = args.forwarded_host_header
    if args.log_level:
        config.log_level = args.log_level

    return config


def main(argv=None):
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args)
    except (FileNotFoundError, ConfigError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config.log_level)
    logger = logging.getLogger(__name__)

    try:
        proxy = ProxyServer.from_config(config)
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    logger.info("Starting Rendertron Proxy Server")
    logger.info(f"Configuration: {config.to_dict()}")

    if config.port < 1024:
        logger.warning(
            f"Attempting to bind to privileged port {config.port}. "
            "This may require elevated permissions."
        )

    try:
        asyncio.run(proxy.run())
    except PermissionError as e:
        logger.error(f"Cannot bind to port {config.port}: {e}")
        sys.exit(1)
    except OSError as e:
        if "Address already in use" in str(e):
            print(
                f"\nError: Port {config.port} is already in use\n", file=sys.stderr
            )
            print("Solutions:", file=sys.stderr)
            print(f"  1. Stop the service using port {config.port}", file=sys.stderr)
            print("  2. Use a different port: rendertron-proxy --port 8081", file=sys.stderr)
        else:
            logger.error(f"OS error: {e}", exc_info=True)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
