import argparse
import logging
import math
import sys
from typing import Any, Dict, List, Optional

import uvicorn

from slowpipe.app import create_app
from slowpipe.config import LOG_LEVELS, ProxySettings, Settings
from slowpipe.errors import ConfigError
from slowpipe.proxy import create_proxy_app, render_nginx_conf

logger = logging.getLogger("slowpipe")

log_fmt = r"%(asctime)-15s %(levelname)s %(name)s %(funcName)s:%(lineno)d %(message)s"
datefmt = "%Y-%m-%d %H:%M:%S"


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    # flags left out on the command line are absent from the namespace
    return {name: value for name, value in vars(args).items() if name != "command"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="slowpipe",
        description="Reproduce a broken pipe caused by a proxy timeout "
        "shorter than the backend's response time.",
    )
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser(
        "serve",
        help="run the stalling backend (default)",
        argument_default=argparse.SUPPRESS,
    )
    serve.add_argument("--host")
    serve.add_argument("--port", type=int)
    serve.add_argument("--delay", type=float, help="seconds to stall")
    serve.add_argument("--payload-size", dest="payload_size", type=int)
    serve.add_argument("--chunk-size", dest="chunk_size", type=int)
    serve.add_argument("--write-timeout", dest="write_timeout", help="seconds, or none")
    serve.add_argument("--send-timeout", dest="send_timeout", help="seconds, or none")
    serve.add_argument("--idle-timeout", dest="idle_timeout", type=float)
    serve.add_argument("--log-level", dest="log_level", choices=LOG_LEVELS)

    proxy = sub.add_parser(
        "proxy", help="run the reverse proxy", argument_default=argparse.SUPPRESS
    )
    nginx = sub.add_parser(
        "nginx-conf",
        help="print the nginx configuration",
        argument_default=argparse.SUPPRESS,
    )
    for p in (proxy, nginx):
        p.add_argument("--host")
        p.add_argument("--port", type=int)
        p.add_argument("--upstream", help="host:port of the backend")
        p.add_argument("--connect-timeout", dest="connect_timeout", type=float)
        p.add_argument("--read-timeout", dest="read_timeout", type=float)
        p.add_argument("--send-timeout", dest="send_timeout", type=float)
    proxy.add_argument("--log-level", dest="log_level", choices=LOG_LEVELS)
    return parser


def _configure_logging(log_level: str) -> None:
    level = logging.DEBUG if log_level == "trace" else log_level.upper()
    logging.basicConfig(format=log_fmt, level=level, datefmt=datefmt)


def serve(args: argparse.Namespace) -> None:
    settings = Settings.from_env(**_overrides(args))
    _configure_logging(settings.log_level)
    logger.info("server is running!")
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        timeout_keep_alive=math.ceil(settings.idle_timeout),
        log_level=settings.log_level,
    )


def _proxy_settings(args: argparse.Namespace) -> ProxySettings:
    return ProxySettings.from_env(**_overrides(args))


def proxy(args: argparse.Namespace) -> None:
    settings = _proxy_settings(args)
    _configure_logging(settings.log_level)
    uvicorn.run(
        create_proxy_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


def nginx_conf(args: argparse.Namespace) -> None:
    sys.stdout.write(render_nginx_conf(_proxy_settings(args)))


COMMANDS = {"serve": serve, "proxy": proxy, "nginx-conf": nginx_conf}


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    argv = sys.argv[1:] if argv is None else argv
    if not argv or argv[0] not in COMMANDS and argv[0] not in ("-h", "--help"):
        argv = ["serve", *argv]
    args = parser.parse_args(argv)
    try:
        COMMANDS[args.command](args)
    except ConfigError as e:
        parser.exit(2, f"slowpipe: {e}\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
