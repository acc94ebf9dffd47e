from __future__ import annotations

import argparse
import logging
import os
import threading

from .config import build_client, load_config
from .errors import ConfigError, JnwError
from .formatter import format_delta, format_notification
from .worker import Channel, NotificationWorker


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="jnw", description="Jira Notification Watcher (polling)")
    p.add_argument("--config", required=True, help="Path to JSON config file")
    p.add_argument(
        "--log-level",
        default=None,
        help="Log level (DEBUG/INFO/WARNING/ERROR). Defaults to env JNW_LOG_LEVEL or INFO",
    )
    p.add_argument("--once", action="store_true", help="Log in, print current notifications and exit")
    return p


def _resolve_log_level(value: str | None) -> int:
    v = (value or "").strip().upper()
    if not v:
        return logging.INFO
    level = logging.getLevelNamesMapping().get(v)
    if isinstance(level, int):
        return level
    return logging.INFO


def main(argv: list[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    log_level = _resolve_log_level(args.log_level or os.environ.get("JNW_LOG_LEVEL"))
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logger = logging.getLogger("jnw")

    try:
        config = load_config(args.config)
        client = build_client(config)
    except (OSError, ValueError, ConfigError) as e:
        logger.error("invalid configuration: config=%s error=%s", args.config, e)
        return 2

    mode = "once" if args.once else "daemon"
    logger.info("jnw start: mode=%s config=%s", mode, args.config)
    logger.info(
        "config: host=%s identity_url=%s poll_interval_seconds=%s timeout_seconds=%s",
        client.host,
        client.identity_url,
        config.poll_interval_seconds,
        config.timeout_seconds,
    )

    try:
        client.login()
    except JnwError as e:
        logger.error("login failed: host=%s error=%s: %s", client.host, type(e).__name__, e)
        return 1

    if args.once:
        logger.info("session check: logged_in=%s", client.is_logged_in())
        try:
            notifications = client.fetch_notifications()
        except JnwError as e:
            logger.error("fetch failed: error=%s: %s", type(e).__name__, e)
            return 1
        for n in notifications:
            print(format_notification(n))
        logger.info("once done: notifications=%d", len(notifications))
        return 0

    output: Channel = Channel()
    done = threading.Event()
    try:
        worker = NotificationWorker.create(client, output, done)
    except JnwError as e:
        logger.error("initial fetch failed: error=%s: %s", type(e).__name__, e)
        return 1

    thread = threading.Thread(
        target=worker.start,
        args=(config.poll_interval_seconds,),
        name="jnw-worker",
        daemon=True,
    )
    thread.start()

    for delta in output:
        print(format_delta(delta), flush=True)

    done.wait()
    return 1 if worker.error is not None else 0


if __name__ == "__main__":
    raise SystemExit(main())
