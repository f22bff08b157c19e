from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from typing import Sequence

import httpx

from authtransport import ConfigError
from kubeclient import KubeClient
from providerconfig import ProviderConfig, load_provider_config


def parse_header(raw: str) -> tuple[str, str]:
    name, sep, value = raw.partition("=")
    if not sep or not name.strip():
        raise argparse.ArgumentTypeError(f"Header must be NAME=VALUE, got: {raw}")
    return name.strip(), value


def build_config(args: argparse.Namespace) -> ProviderConfig:
    config = load_provider_config(args.config)
    if args.host:
        config = replace(config, host=args.host)
    if args.header:
        config = replace(config, external_headers={**config.external_headers, **dict(args.header)})
    return config


def command_request(args: argparse.Namespace) -> int:
    config = build_config(args)
    content = args.data.encode("utf-8") if args.data is not None else None
    headers = {"content-type": "application/json"} if content is not None else None

    with KubeClient(config) as client:
        response = client.request(args.method.upper(), args.path, content=content, headers=headers)

    print(response.text)
    return 0


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Send one authenticated request to a cluster API server."
    )
    parser.add_argument("path", help="Request path, e.g. /api/v1/namespaces.")
    parser.add_argument("--method", default="GET", help="HTTP method.")
    parser.add_argument("--data", default=None, help="JSON request body.")
    parser.add_argument("--config", default=None, help="JSON5 provider config file. Options fall back to HW_* env vars.")
    parser.add_argument("--host", default=None, help="API server URL. Falls back to KUBE_HOST.")
    parser.add_argument(
        "--header",
        action="append",
        type=parse_header,
        default=[],
        help="Extra header NAME=VALUE set on every request. May be repeated.",
    )
    parser.add_argument("--debug", action="store_true", help="Log redacted request/response dumps.")
    parser.set_defaults(handler=command_request)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return int(args.handler(args))
    except (ConfigError, httpx.HTTPError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
