#!/usr/bin/env python3
"""
SoraQueue v5.0.0: main entry point.
Loads a prompts file and feeds it to the Sora backend: a short burst first,
then one job per free slot.
"""

import argparse
import logging
import os
import sys
import threading
import traceback
from datetime import datetime
from pathlib import Path

# ── Determine project root ────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from soraqueue.core.constants import APP_NAME, APP_VERSION, LOG_DIR, LOG_FILE, ORIENTATIONS
from soraqueue.core.config import AppConfig
from soraqueue.core.error_codes import QueueError
from soraqueue.core.prompt_parse import parse_prompt_file
from soraqueue.core.runtime import build_runtime, credentials_from_values
from soraqueue.core.status import progress_pct

logger = logging.getLogger("soraqueue")

STATUS_EVERY_SEC = 10


def setup_logging(verbose: bool = False):
    """Log to <LOG_DIR>/app.log, and to stderr with --verbose."""
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    handlers: list[logging.Handler] = [logging.FileHandler(LOG_FILE, encoding="utf-8")]
    if verbose:
        handlers.append(logging.StreamHandler())
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )
    # requests/urllib3 connection chatter is not useful here
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="soraqueue",
                                     description=f"{APP_NAME} v{APP_VERSION}")
    parser.add_argument("prompts_file", help=".txt, .csv or .json prompts file")
    parser.add_argument("--auth", default=os.environ.get("SORA_AUTHORIZATION"),
                        help="Authorization header value (or SORA_AUTHORIZATION)")
    parser.add_argument("--device-id", default=os.environ.get("SORA_DEVICE_ID"),
                        help="oai-device-id header value (or SORA_DEVICE_ID)")
    parser.add_argument("--sentinel", default=os.environ.get("SORA_SENTINEL_TOKEN"),
                        help="openai-sentinel-token value (or SORA_SENTINEL_TOKEN)")
    parser.add_argument("--cookie", help="Cookie header to read oai-did from")
    parser.add_argument("--model", choices=["sora2", "sora2pro"])
    parser.add_argument("--orientation", choices=list(ORIENTATIONS))
    parser.add_argument("--duration", type=int, choices=[5, 10, 15, 20])
    parser.add_argument("--burst", type=int, help="Jobs sent before slot pacing starts")
    parser.add_argument("--config", help="Path to config.json")
    parser.add_argument("--verbose", action="store_true")
    return parser.parse_args(argv)


def run(args: argparse.Namespace) -> int:
    config = AppConfig(Path(args.config) if args.config else None)
    if args.burst:
        config.override('burst_size', args.burst)

    try:
        jobs = parse_prompt_file(args.prompts_file)
    except (QueueError, OSError) as e:
        print(f"Cannot read prompts: {e}", file=sys.stderr)
        return 2

    credentials = credentials_from_values(args.auth, args.device_id, args.sentinel)
    credentials.observe_cookie(args.cookie)
    if args.device_id and args.device_id != config.device_id:
        config.device_id = args.device_id

    runtime = build_runtime(config, credentials)
    done = threading.Event()
    summary: dict = {}

    def on_notify(message: dict):
        if message.get('type') == 'QUEUE_COMPLETE':
            summary.update(message['data'])
            done.set()

    runtime.control.notify = on_notify

    video_settings = {k: v for k, v in (('model', args.model),
                                        ('orientation', args.orientation),
                                        ('duration', args.duration)) if v}
    response = runtime.control.dispatch({
        'type': 'START_QUEUE',
        'data': {
            'prompts': [{'scene': j.scene_label, 'fullPrompt': j.full_prompt} for j in jobs],
            'settings': {'videoSettings': video_settings},
        },
    })
    if not response.get('success'):
        print(f"Queue not started: {response.get('error')}", file=sys.stderr)
        runtime.shutdown()
        return 2

    if not credentials.is_ready():
        print("No authorization yet, waiting for credentials...", file=sys.stderr)

    try:
        while not done.wait(STATUS_EVERY_SEC):
            status = runtime.control.dispatch({'type': 'GET_STATUS'})
            print(f"[{status['phase']}] {status['cursor']}/{status['total']} "
                  f"sent={status['sent']} errors={status['errors']} "
                  f"pending={status['pendingTaskCount']} ({progress_pct(status)}%)")
    except KeyboardInterrupt:
        runtime.control.dispatch({'type': 'STOP_QUEUE'})
        status = runtime.control.dispatch({'type': 'GET_STATUS'})
        print(f"\nStopped at {status['cursor']}/{status['total']} "
              f"(sent={status['sent']}, errors={status['errors']})")
        return 1
    finally:
        runtime.shutdown()

    print(f"Done: sent {summary['sent']}/{summary['total']}, errors {summary['errors']}")
    return 0 if summary['errors'] == 0 else 1


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbose)
    logger.info("=" * 60)
    logger.info("%s v%s starting at %s", APP_NAME, APP_VERSION, datetime.now().isoformat())
    logger.info("Python: %s", sys.executable)
    logger.info("=" * 60)

    try:
        return run(args)
    except Exception as e:
        error_msg = f"{type(e).__name__}: {e}"
        logger.critical("Fatal error: %s\n%s", error_msg, traceback.format_exc())
        print(f"Fatal error: {error_msg}\nCheck logs at: {LOG_FILE}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
