from __future__ import annotations

import argparse
import asyncio
import json
import logging

from aiohttp import web

from rawdirt.client import FileNavigator, RawdirtApiClient
from rawdirt.config import YamlConfigLoader
from rawdirt.config.models import AppConfig, ConfigLoadRequest
from rawdirt.decode import build_decoder
from rawdirt.errors import RawdirtError, UserCancellation
from rawdirt.index.store import MetadataIndexStore
from rawdirt.logging import init_logging
from rawdirt.processing.batch import BatchRunner, BatchStats
from rawdirt.processing.fetcher import HttpByteFetcher
from rawdirt.processing.pipeline import FileProcessingPipeline
from rawdirt.server import build_services, create_app
from rawdirt.state import AppStateStore, LocalDurableCache, SyncCoordinator
from rawdirt.store import build_object_store

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="rawdirt", description="RAW image library server and processor")
    parser.add_argument(
        "--config",
        default="data/config/config.yaml",
        help="Path to config.yaml (default: data/config/config.yaml)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True, help="Command to run")

    # Command: serve
    serve_parser = subparsers.add_parser("serve", help="Start the HTTP server")
    serve_parser.add_argument(
        "--run-seconds",
        type=float,
        default=None,
        help="Serve for N seconds then exit (useful for smoke testing).",
    )

    # Command: process
    process_parser = subparsers.add_parser("process", help="Decode every RAW file and sync derived metadata")
    process_parser.add_argument("--prefix", default="", help="Only process keys under this prefix")
    process_parser.add_argument("--page-size", type=int, default=None, help="Listing page size")

    # Command: index-stats
    subparsers.add_parser("index-stats", help="Report metadata index size and thumbnail payload")

    return parser


async def _load_config(args: argparse.Namespace) -> AppConfig:
    loader = YamlConfigLoader()
    request = ConfigLoadRequest(
        yaml_path=args.config,
    )
    return await loader.load(request)


async def _serve(args: argparse.Namespace) -> None:
    config = await _load_config(args)
    init_logging(config.logging)
    logger.info(
        "Starting server. host=%s port=%s backend=%s bucket=%s",
        config.server.host,
        config.server.port,
        config.store.backend,
        config.store.bucket,
    )

    app = create_app(build_services(config))
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, config.server.host, config.server.port)
    await site.start()
    try:
        if args.run_seconds is not None:
            await asyncio.sleep(args.run_seconds)
        else:
            await asyncio.Event().wait()
    finally:
        await runner.cleanup()
        logger.info("Server stopped.")


def _log_progress(stats: BatchStats) -> None:
    logger.info(
        "Batch progress. processed=%s total=%s errors=%s stage=%s",
        stats.processed,
        stats.total,
        stats.errors,
        stats.current_stage,
    )


async def _process(args: argparse.Namespace) -> None:
    config = await _load_config(args)
    init_logging(config.logging)
    logger.info("Starting batch processing. dry_run=%s prefix=%s", config.app.dry_run, args.prefix)

    api = RawdirtApiClient(config.server.base_url, timeout_seconds=config.server.request_timeout_seconds)
    fetcher = HttpByteFetcher(timeout_seconds=config.processing.fetch_timeout_seconds)
    state = AppStateStore(local_cache=LocalDurableCache(config.sync.local_cache_dir))
    sync = SyncCoordinator(state, api, config.sync)
    pipeline = FileProcessingPipeline(
        fetcher=fetcher,
        decoder=build_decoder(half_size=config.processing.half_size),
        settings=config.processing,
        index=api,
    )
    page_size = args.page_size or config.scan.default_page_size
    navigator = FileNavigator(api, state, page_size=page_size, prefix=args.prefix, pipeline=pipeline)
    runner = BatchRunner(
        api=api,
        state=state,
        pipeline=pipeline,
        settings=config.processing,
        page_size=page_size,
        prefix=args.prefix,
        dry_run=config.app.dry_run,
    )
    runner.on_progress(_log_progress)

    try:
        await navigator.load_index_snapshot()
        stats = await runner.run()
        if state.has_pending_changes():
            await sync.sync_now()
        logger.info(
            "Batch processing completed. processed=%s errors=%s total=%s",
            stats.processed,
            stats.errors,
            stats.total,
        )
    except UserCancellation:
        logger.info("Batch processing stopped.")
    except RawdirtError:
        logger.exception("Batch processing failed. pending_changes=%s", state.pending_count)
        raise
    finally:
        if runner.pool.state == "draining":
            runner.stop()
        await sync.close()
        await fetcher.close()
        await api.close()


async def _index_stats(args: argparse.Namespace) -> None:
    config = await _load_config(args)
    init_logging(config.logging)
    index = MetadataIndexStore(build_object_store(config.store), config.index)
    try:
        stats = await index.stats()
    finally:
        await index.close()
    if not stats.found:
        print(json.dumps({"message": "Index file not found", "success": False}, indent=2))
        return
    print(
        json.dumps(
            {
                "indexSize": stats.index_size_mb,
                "fileCount": stats.file_count,
                "thumbnailCount": stats.thumbnail_count,
                "thumbnailsSize": stats.thumbnails_size_mb,
                "success": True,
            },
            indent=2,
        )
    )


async def _main_async() -> None:
    parser = _build_parser()
    args = parser.parse_args()

    if args.command == "serve":
        await _serve(args)
    elif args.command == "process":
        await _process(args)
    elif args.command == "index-stats":
        await _index_stats(args)


def main() -> None:
    try:
        asyncio.run(_main_async())
    except KeyboardInterrupt:
        logger.info("Interrupted by user.")


if __name__ == "__main__":
    main()
