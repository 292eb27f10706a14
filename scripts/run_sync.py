"""
Run a CloudSync operation against the registered providers.

Usage:
    # Upload the local data directory to every enabled provider
    python scripts/run_sync.py --direction upload

    # Download from one provider into the local data directory
    python scripts/run_sync.py --direction download --provider <provider-id>

    # Show per-provider sync status
    python scripts/run_sync.py --status

    # Show the local directory tree
    python scripts/run_sync.py --tree

    # Continuous upload (every 5 minutes) until SIGINT/SIGTERM
    python scripts/run_sync.py --mode continuous --interval 300
"""
import asyncio
import json
import logging
import signal
import sys
import os
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))
os.chdir(Path(__file__).parent.parent)

from config import load_config
from storage.exceptions import CloudSyncError
from sync import CloudSyncService, SyncHandle

logger = logging.getLogger(__name__)


def log_results(results: list) -> int:
    """Log a run summary and return the number of failed providers."""
    failed = [r for r in results if not r["success"]]

    logger.info("\n" + "=" * 80)
    logger.info("SYNC SUMMARY")
    logger.info("=" * 80)
    logger.info(f"Providers processed: {len(results)}")
    logger.info(f"Successful: {len(results) - len(failed)}")
    logger.info(f"Failed: {len(failed)}")
    for r in results:
        stats = r.get("sync_stats")
        logger.info(f"  - {r['provider_name']} ({r['provider_id']}): {r['status']} {stats or ''}")

    if failed:
        logger.error("Failed providers:")
        for r in failed:
            logger.error(f"  - {r['provider_name']}: {r.get('error') or r['status']}")

    return len(failed)


async def run_once(service: CloudSyncService, direction: str, provider_id, shutdown_event: asyncio.Event) -> list:
    """Run one sync, cancelling it if a shutdown signal arrives."""
    handle: SyncHandle = service.trigger_sync(direction, provider_id)
    stopper = asyncio.ensure_future(shutdown_event.wait())

    done, _ = await asyncio.wait({handle.task, stopper}, return_when=asyncio.FIRST_COMPLETED)
    if stopper in done and not handle.done():
        handle.cancel("shutdown requested")
    else:
        stopper.cancel()

    return await handle


async def run_continuous(
    service: CloudSyncService,
    interval: int,
    shutdown_event: asyncio.Event,
):
    """Run uploads continuously until shutdown."""
    logger.info(f"Starting continuous sync (interval={interval}s)")

    while not shutdown_event.is_set():
        try:
            results = await run_once(service, "upload", None, shutdown_event)
            log_results(results)

            # Wait for interval or shutdown
            try:
                await asyncio.wait_for(
                    shutdown_event.wait(),
                    timeout=interval
                )
            except asyncio.TimeoutError:
                pass  # Normal timeout, continue

        except CloudSyncError as e:
            logger.error(f"Error in sync run: {e}", exc_info=True)
            await asyncio.sleep(30)  # Brief pause on error


async def main():
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(
        description="CloudSync - Sync a local directory with remote providers"
    )
    parser.add_argument(
        "--config",
        type=str,
        help="Path to config file (default: config/config.yaml)"
    )
    parser.add_argument(
        "--direction",
        type=str,
        default="upload",
        choices=["upload", "download"],
        help="Sync direction: upload (local→all enabled providers) or download (one provider→local)"
    )
    parser.add_argument(
        "--provider",
        type=str,
        help="Provider id to download from (required for --direction download)"
    )
    parser.add_argument(
        "--mode",
        type=str,
        default="once",
        choices=["once", "continuous"],
        help="Sync mode (default: once). Continuous mode only uploads."
    )
    parser.add_argument(
        "--interval",
        type=int,
        default=300,
        help="Seconds between syncs in continuous mode (default: 300)"
    )
    parser.add_argument(
        "--status",
        action="store_true",
        help="Print per-provider sync status and exit"
    )
    parser.add_argument(
        "--tree",
        action="store_true",
        help="Print the local directory tree as JSON and exit"
    )

    args = parser.parse_args()

    # Load config
    config = load_config(args.config)

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format=config.log_format
    )

    service = CloudSyncService(config)
    await service.start()

    if args.status:
        for provider in service.registry.list():
            record = service.get_status()[provider.id]
            line = f"{provider.name} ({provider.id}, {provider.type.value}): {record.status.value}"
            if record.last_sync_time:
                line += f" at {record.last_sync_time.isoformat()}"
            if record.last_sync_error:
                line += f" - {record.last_sync_error}"
            print(line)
        return

    if args.tree:
        print(json.dumps(await service.directory_tree(), indent=2))
        return

    logger.info("=" * 80)
    logger.info("CloudSync")
    logger.info("=" * 80)
    logger.info(f"Data directory: {config.data_dir}")
    logger.info(f"Direction: {args.direction.upper()}")
    if args.provider:
        logger.info(f"Provider: {args.provider}")
    logger.info("=" * 80)

    # Setup shutdown handling
    shutdown_event = asyncio.Event()
    loop = asyncio.get_event_loop()

    def signal_handler(sig, frame):
        logger.info("Received shutdown signal")
        loop.call_soon_threadsafe(shutdown_event.set)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    if args.mode == "once":
        try:
            results = await run_once(service, args.direction, args.provider, shutdown_event)
        except CloudSyncError as e:
            logger.error(f"Sync could not start: {e}")
            sys.exit(2)

        total_failed = log_results(results)
        sys.exit(0 if total_failed == 0 else 1)

    else:
        if args.direction != "upload":
            logger.warning("Continuous mode only supports uploads, ignoring --direction")
        await run_continuous(service, args.interval, shutdown_event)
        logger.info("Sync job stopped")


if __name__ == "__main__":
    asyncio.run(main())
