import argparse
import asyncio
import logging
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).parent / ".env")

from eden.app import ApplicationContext
from eden.config import load_config
from eden.errors import ConfigurationError
from eden.ui_bridge import UIBridge

logger = logging.getLogger("EDEN.Main")


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s - %(levelname)s - %(message)s",
    )


async def run(config_path: str) -> None:
    config = load_config(config_path)
    _setup_logging(config.get("system.log_level", "INFO"))

    async with ApplicationContext(config) as app:
        bridge = UIBridge(app.orchestrator, app.memory)
        host = config.get("ui.host", "localhost")
        port = config.get("ui.port", 8001)
        while True:
            try:
                await bridge.serve(host, port)
            except OSError as e:
                logger.error(f"WebSocket server error: {e}", exc_info=True)
                await asyncio.sleep(1)


def main() -> None:
    parser = argparse.ArgumentParser(description="EDEN conversation core")
    parser.add_argument("--config", default="config.json", help="Path to config.json")
    args = parser.parse_args()
    try:
        asyncio.run(run(args.config))
    except ConfigurationError as e:
        logger.critical(f"Startup failed: {e}")
        raise SystemExit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
