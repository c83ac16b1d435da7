import structlog
import uvicorn

from usagelens.cli import parse_args
from usagelens.exceptions import ConfigurationError
from usagelens.logging import setup_logging
from usagelens.server import create_app

logger = structlog.get_logger()


def _parse_listen_address(addr: "str") -> "tuple[str, int]":
    """
    parses listen address in format ':8080' or '0.0.0.0:8080'.
    """
    if addr.startswith(":"):
        return ("0.0.0.0", int(addr[1:]))

    host, port = addr.rsplit(":", 1)
    return (host, int(port))


def main() -> "None":
    try:
        config = parse_args()
    except ConfigurationError as exc:
        raise SystemExit(str(exc)) from exc
    setup_logging(config.log_level, config.log_format)

    try:
        app = create_app(config)
    except ConfigurationError as exc:
        raise SystemExit(str(exc)) from exc

    host, port = _parse_listen_address(config.listen_address)
    logger.info("web_server_starting", host=host, port=port)
    # uvicorn installs its own SIGINT/SIGTERM handlers and runs the
    # app lifespan, which closes the store on shutdown
    uvicorn.run(app, host=host, port=port, log_config=None)


if __name__ == "__main__":
    main()
