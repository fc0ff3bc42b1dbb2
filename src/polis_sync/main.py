from __future__ import annotations

import argparse
import logging
import os
import time

from .config import load_config
from .logs import LogService, resolve_log_level
from .notify.broadcast import Broadcaster
from .runner import SYNC_STREAM, build_runner
from .scheduler import SyncScheduler


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="polis-sync", description="Polis discovery stream sync (polling)")
    p.add_argument("--config", required=True, help="Path to JSON config file")
    p.add_argument(
        "--log-level",
        default=None,
        help="Log level (DEBUG/INFO/WARNING/ERROR). Defaults to env POLIS_SYNC_LOG_LEVEL or INFO",
    )
    p.add_argument(
        "--status-interval",
        type=int,
        default=None,
        help="Daemon heartbeat interval seconds. Defaults to env POLIS_SYNC_STATUS_INTERVAL_SECONDS or 60. Set 0 to disable.",
    )

    mode = p.add_mutually_exclusive_group(required=False)
    mode.add_argument("--once", action="store_true", help="Run one sync cycle and exit")
    mode.add_argument("--daemon", action="store_true", help="Run forever with poll interval")
    return p


def _handlers_summary(runner) -> str:  # noqa: ANN001
    parts = [f"{type(h).__name__}({h.name()})" for h in getattr(runner, "handlers", ())]
    return "; ".join(parts) if parts else "<none>"


def _status_interval(value: int | None) -> int:
    if value is None:
        try:
            value = int(os.environ.get("POLIS_SYNC_STATUS_INTERVAL_SECONDS") or 60)
        except ValueError:
            value = 60
    return max(0, int(value))


def main(argv: list[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    log_level = resolve_log_level(args.log_level or os.environ.get("POLIS_SYNC_LOG_LEVEL"))

    config = load_config(args.config)
    mode = "daemon" if args.daemon and not args.once else "once"

    with LogService(config.log_dir(), level=log_level, backup_count=config.logging.backup_count) as logs:
        logger = logs.logger

        broadcaster = Broadcaster(default_maxsize=config.broadcast_queue_size)
        runner = build_runner(config, broadcaster=broadcaster)
        status_interval = _status_interval(args.status_interval)

        logger.info("polis-sync start: mode=%s config=%s", mode, args.config)
        logger.info(
            "config: data_dir=%s local_domain=%s discovery_domain=%s sqlite_path=%s poll_interval_seconds=%d",
            config.data_dir,
            config.local_domain or "<none>",
            config.discovery_domain or "<none>",
            config.sqlite_path,
            config.poll_interval_seconds,
        )
        logger.info("handlers: %s", _handlers_summary(runner))
        if runner.discovery is None:
            logger.warning("discovery url or key not configured; sync cycles will be no-ops")
        if not config.local_domain:
            logger.warning("base_url not configured; sync cycles will be no-ops")

        if mode == "once":
            result = runner.run_once()
            logger.info(
                "once done: duration_ms=%d events=%d cursor=%s notifications=%d feed=%d followers_changed=%s comments_changed=%s query_errors=%d handler_errors=%d",
                result.duration_ms,
                result.events_fetched,
                result.cursor_after or "-",
                result.new_notifications,
                result.new_feed_items,
                result.followers_changed,
                result.comments_changed,
                result.query_errors,
                result.handler_errors,
            )
            return 0

        scheduler = SyncScheduler(runner, config.poll_interval_seconds)
        logger.info(
            "daemon: poll_interval_seconds=%d status_interval_seconds=%d",
            int(scheduler.interval_seconds),
            status_interval,
        )
        scheduler.start()
        try:
            while scheduler.is_running():
                time.sleep(status_interval if status_interval > 0 else 1.0)
                if status_interval <= 0:
                    continue
                last = scheduler.last_result
                logger.info(
                    "daemon alive: cycles=%d crashes=%d cursor=%s last_duration_ms=%d last_events=%d subscribers=%d",
                    scheduler.cycles,
                    scheduler.crashes,
                    runner.store.get_cursor(SYNC_STREAM),
                    last.duration_ms if last else 0,
                    last.events_fetched if last else 0,
                    broadcaster.subscriber_count(),
                )
        except KeyboardInterrupt:
            logger.info("interrupted, stopping")
        finally:
            scheduler.stop(timeout=30)
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
