"""xtwebhook CLI.

Usage:
    python -m xtwebhook serve-gateway [--host HOST] [--port PORT]
    python -m xtwebhook serve-sender [--host HOST] [--port PORT]
    python -m xtwebhook sign --secret S [--timestamp T] [--input PATH]
    python -m xtwebhook send-test --url URL --secret S [--company-id ID]

Exit codes:
    0: Success
    1: Internal error
    2: Configuration, input or delivery failure
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
import time
from typing import Any

from xtwebhook.errors import ConfigError, DeliveryError
from xtwebhook.services.webhooks.delivery import build_delivery_headers, deliver_webhook
from xtwebhook.services.webhooks.dispatcher import TEST_EVENT_TYPE
from xtwebhook.services.webhooks.envelope import build_envelope
from xtwebhook.services.webhooks.signing import sign_webhook_payload

logger = logging.getLogger(__name__)

DEFAULT_SENDER_PORT = 8080
DEFAULT_TEST_COMPANY_ID = "test-company"


def _output_json(data: dict[str, Any]) -> None:
    print(json.dumps(data, sort_keys=True, indent=2))


def _configure_logging() -> None:
    level_name = os.environ.get("LOG_LEVEL", "INFO").strip().upper() or "INFO"
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _read_body(input_path: str | None) -> bytes:
    if input_path:
        with open(input_path, "rb") as f:
            return f.read()
    return sys.stdin.buffer.read()


def cmd_serve_gateway(args: argparse.Namespace) -> int:
    import uvicorn

    from xtwebhook.api.main import create_gateway_app
    from xtwebhook.config import load_gateway_config

    try:
        config = load_gateway_config()
    except ConfigError as e:
        _output_json({"error": "config_error", "message": str(e)})
        return 2

    app = create_gateway_app(config=config, trust_forwarded_for=args.trust_forwarded_for)
    uvicorn.run(
        app,
        host=args.host or config.host,
        port=args.port or config.port,
        log_level=logging.getLevelName(logging.getLogger().level).lower(),
    )
    return 0


def cmd_serve_sender(args: argparse.Namespace) -> int:
    import uvicorn

    from xtwebhook.api.main import create_sender_app
    from xtwebhook.config import load_delivery_config

    try:
        config = load_delivery_config()
    except ConfigError as e:
        _output_json({"error": "config_error", "message": str(e)})
        return 2

    app = create_sender_app(config=config)
    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        log_level=logging.getLevelName(logging.getLogger().level).lower(),
    )
    return 0


def cmd_sign(args: argparse.Namespace) -> int:
    """Print the signature headers for a body (integration debugging)."""
    try:
        body = _read_body(args.input)
    except OSError as e:
        _output_json({"error": "input_error", "message": f"Cannot read input: {e}"})
        return 2

    timestamp = args.timestamp if args.timestamp is not None else int(time.time())
    signature = sign_webhook_payload(args.secret, timestamp, body)
    _output_json(dict(signature.headers))
    return 0


def cmd_send_test(args: argparse.Namespace) -> int:
    """Send one signed webhook.test envelope to a receiver."""
    envelope = build_envelope(
        TEST_EVENT_TYPE,
        {"message": "This is a test webhook from XTSystems", "source": "xtwebhook-cli"},
        args.company_id,
    )
    body = envelope.encode()
    signature = sign_webhook_payload(args.secret, envelope.timestamp, body)
    headers = build_delivery_headers(signature.headers)

    try:
        result = asyncio.run(
            deliver_webhook(args.url, body, headers, timeout_seconds=args.timeout)
        )
    except DeliveryError as e:
        _output_json({"success": False, "error": type(e).__name__, "message": str(e)})
        return 2

    _output_json(
        {
            "success": result.success,
            "status_code": result.status_code,
            "duration_ms": result.duration_ms,
            "body": result.body,
        }
    )
    return 0 if result.success else 2


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="xtwebhook",
        description="XTSystems webhook sender and receiver",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    gateway_parser = subparsers.add_parser(
        "serve-gateway",
        help="Run the inbound webhook receiver (configured from the environment)",
    )
    gateway_parser.add_argument("--host", default=None, help="Bind host (default: WEBHOOK_HOST)")
    gateway_parser.add_argument(
        "--port", type=int, default=None, help="Bind port (default: WEBHOOK_PORT)"
    )
    gateway_parser.add_argument(
        "--trust-forwarded-for",
        action="store_true",
        default=False,
        help="Rate limit on X-Forwarded-For (only behind a trusted proxy)",
    )

    sender_parser = subparsers.add_parser(
        "serve-sender",
        help="Run the webhook management and dispatch API",
    )
    sender_parser.add_argument("--host", default="0.0.0.0", help="Bind host")
    sender_parser.add_argument("--port", type=int, default=DEFAULT_SENDER_PORT, help="Bind port")

    sign_parser = subparsers.add_parser(
        "sign",
        help="Print signature headers for a request body",
    )
    sign_parser.add_argument("--secret", required=True, help="Shared webhook secret")
    sign_parser.add_argument(
        "--timestamp", type=int, default=None, help="Unix seconds (default: now)"
    )
    sign_parser.add_argument(
        "--input",
        default=None,
        metavar="PATH",
        help="File with the exact body bytes (reads stdin if omitted)",
    )

    test_parser = subparsers.add_parser(
        "send-test",
        help="Send one signed webhook.test event to a receiver",
    )
    test_parser.add_argument("--url", required=True, help="Receiver endpoint URL")
    test_parser.add_argument("--secret", required=True, help="Shared webhook secret")
    test_parser.add_argument(
        "--company-id",
        default=DEFAULT_TEST_COMPANY_ID,
        help=f"company_id placed in the envelope (default: {DEFAULT_TEST_COMPANY_ID})",
    )
    test_parser.add_argument(
        "--timeout", type=float, default=10.0, help="Request timeout in seconds"
    )

    return parser


COMMANDS = {
    "serve-gateway": cmd_serve_gateway,
    "serve-sender": cmd_serve_sender,
    "sign": cmd_sign,
    "send-test": cmd_send_test,
}


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Exit codes:
        0: Success
        1: Internal error (unexpected)
        2: Configuration, input or delivery failure
    """
    try:
        parser = create_parser()
        args = parser.parse_args(argv)

        if args.command is None:
            parser.print_help()
            return 0

        _configure_logging()
        return COMMANDS[args.command](args)

    except Exception as e:
        logger.exception("Unexpected error")
        _output_json({"error": "internal_error", "message": str(e)})
        return 1


if __name__ == "__main__":
    sys.exit(main())
