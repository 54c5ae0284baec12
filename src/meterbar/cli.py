import argparse

from meterbar.config import Config
from meterbar.logging import LOG_FORMATS


def parse_args(argv: "list[str] | None" = None) -> "Config":
    config = Config.from_env()

    parser = argparse.ArgumentParser(
        prog="meterbar",
        description="Collects AI usage quotas from several sources and "
        "publishes one merged snapshot",
    )
    parser.add_argument(
        "--web.listen-address",
        dest="listen_address",
        default="",
        help="Address to expose Prometheus metrics on, e.g. :9186 "
        "(default: disabled)",
    )
    parser.add_argument(
        "--refresh.interval",
        dest="refresh_interval",
        type=int,
        default=config.refresh_interval,
        help=f"Refresh interval in seconds (default: {config.refresh_interval})",
    )
    parser.add_argument(
        "--fetch.timeout",
        dest="fetch_timeout",
        type=float,
        default=config.fetch_timeout,
        help=f"Overall timeout per source fetch in seconds "
        f"(default: {config.fetch_timeout:g})",
    )
    parser.add_argument(
        "--log.level",
        dest="log_level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: info)",
    )
    parser.add_argument(
        "--log.format",
        dest="log_format",
        default="console",
        choices=list(LOG_FORMATS),
        help="Log output format (default: console)",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--once",
        action="store_true",
        help="Run a single refresh cycle and exit",
    )
    mode.add_argument(
        "--read-published",
        dest="read_published",
        action="store_true",
        help="Print the published snapshot the way an external reader sees it",
    )

    args = parser.parse_args(argv)
    if args.refresh_interval <= 0:
        parser.error("--refresh.interval must be positive")

    config.listen_address = args.listen_address
    config.refresh_interval = args.refresh_interval
    config.fetch_timeout = args.fetch_timeout
    config.log_level = args.log_level
    config.log_format = args.log_format
    config.once = args.once
    config.read_published = args.read_published
    return config
