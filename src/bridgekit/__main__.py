"""Run the bridge service: ``python -m bridgekit``."""

from __future__ import annotations

import logging
import sys

import uvicorn

from bridgekit.config import BridgeConfig
from bridgekit.core.bridge import CompanionBridge
from bridgekit.core.errors import ConfigurationError
from bridgekit.server.app import create_app

logger = logging.getLogger("bridgekit")


def main() -> None:
    try:
        config = BridgeConfig.from_env()
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(1)

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    # Per-frame websocket logs are too noisy below DEBUG
    logging.getLogger("websockets").setLevel(logging.WARNING)
    logging.getLogger("aioice").setLevel(logging.WARNING)

    bridge = CompanionBridge(config)
    app = create_app(bridge)
    logger.info(
        "Starting bridge on %s:%d (peer backend: %s)", config.host, config.port, config.peer_backend
    )
    uvicorn.run(app, host=config.host, port=config.port, log_level=config.log_level.lower())


if __name__ == "__main__":
    main()
