#!/usr/bin/env python3
"""
Run Admin Monitor - console view of the admin panel and notifications

Mounts AdminPanelController and NotificationsController for an admin token
and logs every reconciled change until Ctrl+C.

Usage:
    python run_admin_monitor.py                       # token from DISASTER_ALERT_TOKEN
    python run_admin_monitor.py --token eyJ...        # explicit token
    python run_admin_monitor.py --api-url http://host:5000/api --ws-url ws://host:5000/ws

Exit codes:
    0  stopped with Ctrl+C
    2  missing, invalid, or non-admin token
"""
import os
import sys
import argparse
from pathlib import Path

# Load .env from the project root (one level up from client/)
from dotenv import load_dotenv
env_path = Path(__file__).parent.parent / '.env'
load_dotenv(env_path)

import asyncio
import logging

from config import Settings, get_settings
from controllers import AdminPanelController, NotificationsController
from middleware.session import SessionContext
from services.view_store import ViewState

logger = logging.getLogger('admin-monitor')

EXIT_OK = 0
EXIT_BAD_TOKEN = 2


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Watch the admin panel in the console")
    parser.add_argument('--token', help="Admin bearer token (default: $DISASTER_ALERT_TOKEN)")
    parser.add_argument('--api-url', help="REST base URL, e.g. http://localhost:5000/api")
    parser.add_argument('--ws-url', help="WebSocket URL, e.g. ws://localhost:5000/ws")
    parser.add_argument('--no-notifications', action='store_true', help="Do not mount the notification list")
    parser.add_argument('--log-level', default=None, help="DEBUG, INFO, WARNING ...")
    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace) -> Settings:
    overrides = {}
    if args.api_url:
        overrides['api_base_url'] = args.api_url
    if args.ws_url:
        overrides['ws_url'] = args.ws_url
    if overrides:
        return Settings(**overrides)
    return get_settings()


def log_changes(view: str):
    """Subscriber that logs counters whenever a view publishes a new state"""
    def on_change(state: ViewState):
        counters = ", ".join(f"{k}={v}" for k, v in sorted(state.stats.to_dict().items()))
        pending = f" pending={len(state.pending_ids)}" if state.pending_ids else ""
        logger.info(f"[{view}] v{state.version}: {len(state.entities)} items; {counters}{pending}")
    return on_change


async def monitor(settings: Settings, token: str, with_notifications: bool = True) -> int:
    context = SessionContext(settings)
    try:
        await context.restore(token)
        if context.session is None:
            logger.error("Token is invalid or was rejected by the server")
            return EXIT_BAD_TOKEN
        if not context.is_admin:
            logger.error(f"{context.session.name or context.session.user_id} is not an admin")
            return EXIT_BAD_TOKEN

        panel = AdminPanelController(context)
        panel.subscribe(log_changes(panel.name))
        if not await panel.mount():
            logger.error(f"Admin panel could not be loaded: {panel.error}")
            return EXIT_BAD_TOKEN

        if with_notifications:
            notifications = NotificationsController(context)
            notifications.subscribe(log_changes(notifications.name))
            await notifications.mount()

        logger.info(
            f"Watching {len(panel.reports)} reports "
            f"(pending={panel.state.stats['pending']}, critical={panel.state.stats['critical']})"
        )
        # Run until cancelled by Ctrl+C
        await asyncio.Event().wait()
        return EXIT_OK
    finally:
        await context.aclose()


def main(argv=None) -> int:
    args = parse_args(argv)
    settings = build_settings(args)

    logging.basicConfig(
        level=getattr(logging, (args.log_level or settings.log_level).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    token = args.token or settings.disaster_alert_token or os.getenv('DISASTER_ALERT_TOKEN')
    if not token:
        logger.error("No token: pass --token or set DISASTER_ALERT_TOKEN")
        return EXIT_BAD_TOKEN

    print("🛰️  Starting Admin Monitor...")
    print(f"   REST: {settings.api_base_url}")
    print(f"   WebSocket: {settings.ws_url}")
    print("   Press Ctrl+C to stop\n")

    try:
        return asyncio.run(monitor(settings, token, with_notifications=not args.no_notifications))
    except KeyboardInterrupt:
        logger.info("Stopped")
        return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
