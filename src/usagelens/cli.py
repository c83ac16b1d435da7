import argparse

from usagelens.config import Config


def parse_args(argv: "list[str] | None" = None) -> "Config":
    parser = argparse.ArgumentParser(
        prog="usagelens",
        description="Progressive cost dashboard over an API usage store",
    )
    parser.add_argument(
        "--web.listen-address",
        dest="listen_address",
        default=":8080",
        help="Address to listen on (default: :8080)",
    )
    parser.add_argument(
        "--scan.segments",
        dest="scan_segments",
        type=int,
        default=None,
        help="Concurrent scan segments per run (default: $SCAN_SEGMENTS or 20)",
    )
    parser.add_argument(
        "--scan.timeout",
        dest="run_timeout",
        type=float,
        default=None,
        help="Seconds before a stuck run is reset (default: 300)",
    )
    parser.add_argument(
        "--demo",
        dest="demo",
        action="store_true",
        help="Serve generated demo data instead of the usage table",
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
        choices=["console", "json"],
        help="Log output format (default: console)",
    )

    args = parser.parse_args(argv)
    config = Config.from_env()
    config.listen_address = args.listen_address
    config.log_level = args.log_level
    config.log_format = args.log_format
    if args.scan_segments is not None:
        config.scan_segments = args.scan_segments
    if args.run_timeout is not None:
        config.run_timeout = args.run_timeout
    if args.demo:
        config.demo = True
    return config
