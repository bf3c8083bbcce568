import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from .config import ConfigError, FrontierConfig
from .service import CrawlerService

logger = logging.getLogger("crawlfrontier")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _attach_file_logging(log_path: Path, level: str) -> None:
    root = logging.getLogger()

    for h in root.handlers:
        if isinstance(h, logging.FileHandler) and Path(h.baseFilename) == log_path:
            return

    log_path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setLevel(getattr(logging, level.upper(), logging.INFO))
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
    root.addHandler(file_handler)


def configure_logging(config: FrontierConfig) -> None:
    logging.basicConfig(
        level=getattr(logging, config.logs.log_level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
    )
    log_path = Path(config.logs.log_file)
    if not log_path.is_absolute():
        log_path = config.get_workspace_path() / log_path
    _attach_file_logging(log_path, config.logs.log_level)


def _dump_status(service: CrawlerService) -> None:
    logger.info("=== Crawler status ===")
    for key, value in service.get_stats().items():
        logger.info(f"  {key}: {value}")


async def run_crawler(config: FrontierConfig) -> None:
    service = CrawlerService(config)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, service.request_stop)
    if hasattr(signal, "SIGUSR1"):
        loop.add_signal_handler(signal.SIGUSR1, _dump_status, service)

    try:
        await service.start(config.seeds)
        await service.run()
    finally:
        await service.stop()


def main() -> None:
    parser = argparse.ArgumentParser(description="Polite crawl frontier")
    parser.add_argument(
        "--config",
        required=False,
        help="Path to config YAML file",
        default="config.yaml",
    )
    args = parser.parse_args()

    try:
        config = FrontierConfig.from_yaml(args.config)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)

    configure_logging(config)

    logger.info("=== Crawl configuration ===")
    logger.info(f"Workspace: {config.get_workspace_path()}")
    logger.info(f"User agent: {config.user_agent}")
    logger.info(f"Seeds: {len(config.seeds)}")
    logger.info(f"Workers: {config.limits.workers}")
    logger.info(f"Max depth: {config.limits.max_depth}")
    logger.info(f"Politeness delay: {config.politeness.delay_ms} ms")
    logger.info(f"Resumable: {config.resumable}")

    asyncio.run(run_crawler(config))


if __name__ == "__main__":
    main()
