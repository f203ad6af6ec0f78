"""
Command line entry point: loads the configuration and serves the overlay.
"""
import argparse
import sys

import uvicorn

from .api.app import create_app
from .config import Settings, apply_settings_overrides
from .session import list_models
from .utils.config import default_config, load_config
from .utils.logging import get_logger, setup_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Webcam object detection overlay")
    parser.add_argument('-c', '--config', default=None, type=str, help='Path to JSON config file')
    parser.add_argument('--host', default=None, type=str, help='Bind address')
    parser.add_argument('-p', '--port', default=None, type=int, help='Port')
    parser.add_argument('--log-level', default=None, type=str, help='Logging level')
    parser.add_argument('-m', '--model', default=None, type=str, help='Model to load at startup')
    parser.add_argument('--list-models', action='store_true', help='Print available models and exit')
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    config = load_config(args.config) if args.config else default_config()
    config = apply_settings_overrides(config, Settings())
    if args.host:
        config.app.host = args.host
    if args.port is not None:
        config.app.port = args.port
    if args.log_level:
        config.app.log_level = args.log_level
    if args.model:
        config.models.default_model = args.model

    if args.list_models:
        for name in list_models(config.models.models_dir):
            print(name)
        return 0

    setup_logging(config.app.log_level, config.app.log_format)
    logger = get_logger("main")
    logger.info("Serving on http://%s:%d", config.app.host, config.app.port)
    uvicorn.run(
        create_app(config),
        host=config.app.host,
        port=config.app.port,
        log_level=config.app.log_level.lower(),
    )
    return 0


if __name__ == '__main__':
    sys.exit(main())
