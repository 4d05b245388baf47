"""ReelSync Main Application."""

import asyncio
import contextlib
import signal
import sys
from datetime import UTC, datetime, timedelta

from pydantic import ValidationError
from tzlocal import get_localzone

from src import REELSYNC_HEADER, log
from src.config.settings import ReelSyncConfig, get_config
from src.core.pipeline import LibrarySyncPipeline
from src.exceptions import ConfigError


def _setup_signal_handlers(stop_event: asyncio.Event) -> None:
    """Install SIGINT/SIGTERM handlers that request a graceful shutdown."""
    loop = asyncio.get_running_loop()

    def _on_signal(sig: int) -> None:
        log.info(
            f"ReelSync: Received {signal.Signals(sig).name} signal, "
            "shutting down after the current stage..."
        )
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _on_signal, sig)
        except NotImplementedError:
            signal.signal(sig, lambda s, f: _on_signal(s))


async def _run_loop(
    pipeline: LibrarySyncPipeline, config: ReelSyncConfig, stop_event: asyncio.Event
) -> None:
    while not stop_event.is_set():
        try:
            await pipeline.run_once()
        except asyncio.CancelledError:
            log.debug("ReelSync: Sync run cancelled")
            break
        except Exception:
            log.error("ReelSync: Sync run error", exc_info=True)

        if not config.sync.interval:
            break

        next_run = datetime.now(UTC) + timedelta(seconds=config.sync.interval)
        log.info(
            f"ReelSync: Next sync scheduled for: "
            f"{next_run.astimezone(get_localzone()).strftime('%Y-%m-%d %H:%M:%S')}"
        )
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(stop_event.wait(), config.sync.interval)


async def run() -> int:
    """Run the sync pipeline once, or periodically when an interval is set.

    Returns:
        int: Exit code (0 for success, 1 for error)
    """
    pipeline: LibrarySyncPipeline | None = None
    ret = 0
    try:
        config = get_config()
        log.info("\n" + REELSYNC_HEADER)
        log.info(f"ReelSync: {config!s}")

        stop_event = asyncio.Event()
        _setup_signal_handlers(stop_event)

        pipeline = LibrarySyncPipeline(config)
        run_task = asyncio.create_task(_run_loop(pipeline, config, stop_event))
        stop_task = asyncio.create_task(stop_event.wait())
        done, _ = await asyncio.wait(
            {run_task, stop_task}, return_when=asyncio.FIRST_COMPLETED
        )
        if run_task not in done:
            run_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await run_task
        stop_task.cancel()
    except ValidationError as e:
        log.error(f"ReelSync: Configuration validation error: {e}")
        return 1
    except ConfigError as e:
        log.error(f"ReelSync: Configuration error: {e}")
        return 1
    except (OSError, PermissionError) as e:
        log.error(f"ReelSync: File system error: {e}")
        return 1
    except Exception as e:
        log.error(f"ReelSync: Unexpected application error: {e}", exc_info=True)
        return 1
    finally:
        if pipeline is not None:
            try:
                await pipeline.close()
                log.success("ReelSync: Shutdown complete")
            except Exception as e:
                log.error(f"ReelSync: Error during shutdown: {e}", exc_info=True)
                ret = 1
    return ret


def main() -> int:
    """Entry point of the ``reelsync`` command."""
    try:
        return asyncio.run(run())
    except KeyboardInterrupt:
        log.info("ReelSync: Application interrupted")
        return 0


if __name__ == "__main__":
    sys.exit(main())
