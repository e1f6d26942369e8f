"""
Command line interface.

    sqlsprinkler [-V] [-v] [-w] [-m] [--remote URL]
    sqlsprinkler zone <id> on|off|status [--order]
    sqlsprinkler sys on|off|run|winterize|status|test
    sqlsprinkler init-db

Commands run against the local GPIO pins unless a daemon URL is given
(``--remote`` or SQLSPRINKLER_DAEMON_URL), in which case they are sent to
the daemon that owns the pins.
"""
import argparse
import logging
import sys
from typing import List, Optional

from . import __version__, create_app
from .client import DaemonClient, DaemonError
from .config import Settings, load_settings
from .context import SprinklerContext, build_context
from .hardware import HardwareUnavailable
from .logging_config import setup_logging
from .mqtt import MqttBridge
from .registry import ZoneBusy
from .store import NotFound, PersistenceError
from .system import RunInProgress

logger = logging.getLogger(__name__)

ZONE_ACTIONS = ("on", "off", "status")
SYS_ACTIONS = ("on", "off", "run", "winterize", "status", "test")

# Failures reported as exit code 1
CLI_ERRORS = (
    NotFound,
    HardwareUnavailable,
    PersistenceError,
    DaemonError,
    RunInProgress,
    ZoneBusy,
    ValueError,
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sqlsprinkler", description="SQLSprinkler")
    parser.add_argument("-V", dest="version", action="store_true",
                        help="Prints the version of SQLSprinkler.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose mode")
    parser.add_argument("-w", "--daemon", action="store_true",
                        help="Launches the SQLSprinkler API web daemon.")
    parser.add_argument("-m", "--home-assistant", action="store_true",
                        help="Broadcasts the current system to home assistant.")
    parser.add_argument("--remote", metavar="URL",
                        help="Send commands to a running daemon instead of driving the pins.")

    sub = parser.add_subparsers(dest="command")

    zone = sub.add_parser("zone", help="Control a single zone")
    zone.add_argument("id", type=int)
    zone.add_argument("action", choices=ZONE_ACTIONS)
    zone.add_argument("--order", action="store_true",
                      help="Treat the id as a position in the system order")

    system = sub.add_parser("sys", help="Control the whole system")
    system.add_argument("action", choices=SYS_ACTIONS)

    sub.add_parser("init-db", help="Create the database tables")
    return parser


# ============================================================================
# Local execution
# ============================================================================

def _resolve_zone(ctx: SprinklerContext, zone_id: int, by_order: bool):
    if by_order:
        return ctx.registry.by_order(zone_id)
    return ctx.registry.get(zone_id)


def zone_command(ctx: SprinklerContext, zone_id: int, action: str, by_order: bool = False):
    """
    Run ``zone <id> on|off|status`` against local pins.

    ``on`` with auto-off blocks until the timer has switched the zone off,
    since the timer dies with the process.
    """
    zone = _resolve_zone(ctx, zone_id, by_order)

    if action == "status":
        print(f"The zone is {'on' if zone.is_active() else 'off'}")
        return

    if action == "off":
        ctx.registry.deactivate(zone.id)
        return

    ctx.registry.activate(zone.id)
    if not zone.auto_off:
        return

    # Stay alive until the auto-off timer has switched the zone off
    logger.info(f"[CLI] Waiting {zone.run_duration}s for auto-off of {zone.name}")
    try:
        ctx.timers.wait(zone.id)
    except KeyboardInterrupt:
        ctx.registry.deactivate(zone.id)
        raise


def sys_command(ctx: SprinklerContext, action: str):
    system = ctx.system

    if action == "status":
        print(f"The system is {'enabled' if system.is_enabled() else 'disabled'}")
    elif action == "on":
        system.set_enabled(True)
    elif action == "off":
        system.set_enabled(False)
    elif action == "run":
        if not system.is_enabled():
            logger.warning("[CLI] System is not enabled, refusing.")
            return
        system.run()
    elif action == "winterize":
        system.winterize()
    elif action == "test":
        system.test_all()


# ============================================================================
# Remote execution
# ============================================================================

def remote_zone_command(client: DaemonClient, zone_id: int, action: str, by_order: bool = False):
    if by_order:
        zones = client.zones()
        if not 0 <= zone_id < len(zones):
            raise NotFound(f"Zone at position {zone_id}")
        zone_id = zones[zone_id]["id"]

    if action == "status":
        print(f"The zone is {'on' if client.zone(zone_id)['state'] else 'off'}")
    else:
        client.set_zone_state(zone_id, action == "on")


def remote_sys_command(client: DaemonClient, action: str):
    if action == "status":
        print(f"The system is {'enabled' if client.get_system_enabled() else 'disabled'}")
    elif action in ("on", "off"):
        client.set_system_enabled(action == "on")
    else:
        if action == "run" and not client.get_system_enabled():
            logger.warning("[CLI] System is not enabled, refusing.")
            return
        client.start_run(action)
        print(f"Started '{action}' on the daemon")


# ============================================================================
# Daemon
# ============================================================================

def run_daemon(ctx: SprinklerContext, web: bool, home_assistant: bool):
    """Run the REST daemon and/or the MQTT bridge until interrupted."""
    if home_assistant and not ctx.settings.mqtt_host:
        raise ValueError("MQTT host is not configured (SQLSPRINKLER_MQTT_HOST or mqtt_host)")

    ctx.registry.all_off()

    bridge = None
    if home_assistant:
        bridge = MqttBridge(ctx)
        if not web:
            logger.info("[CLI] Starting home assistant/mqtt integration...")
            try:
                bridge.serve_forever()
            finally:
                ctx.shutdown()
            return
        bridge.start()

    settings = ctx.settings
    app = create_app(ctx)
    logger.info(f"[CLI] Starting SQLSprinkler daemon on {settings.daemon_host}:{settings.daemon_port}")
    try:
        # debug=False prevents reloader which could cause GPIO conflicts
        app.run(
            host=settings.daemon_host,
            port=settings.daemon_port,
            debug=False,
            use_reloader=False,
            threaded=True,
        )
    finally:
        if bridge is not None:
            bridge.stop()


# ============================================================================
# Entry point
# ============================================================================

def main(argv: Optional[List[str]] = None, settings: Optional[Settings] = None,
         context: Optional[SprinklerContext] = None) -> int:
    """
    CLI entry point.

    Returns:
        Process exit code: 0 on success, 1 on failure (usage errors exit 2
        from argparse)
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(f"SQLSprinkler v{__version__}")
        return 0

    settings = settings or load_settings()
    daemon = args.daemon or args.home_assistant
    setup_logging(verbose=args.verbose or settings.verbose, daemon=daemon)

    if not daemon and args.command is None:
        parser.print_help()
        return 2

    remote_url = args.remote or settings.daemon_url
    try:
        if remote_url and not daemon and args.command != "init-db":
            client = DaemonClient(remote_url)
            if args.command == "zone":
                remote_zone_command(client, args.id, args.action, args.order)
            else:
                remote_sys_command(client, args.action)
            return 0

        if context is None:
            context = build_context(settings, init_schema=daemon or args.command == "init-db")

        if daemon:
            run_daemon(context, web=args.daemon,
                       home_assistant=args.home_assistant or settings.mqtt_enabled)
            return 0

        try:
            if args.command == "init-db":
                print("Database ready")
            elif args.command == "zone":
                zone_command(context, args.id, args.action, args.order)
            else:
                sys_command(context, args.action)
        finally:
            # A zone switched on without auto-off keeps running after exit
            context.shutdown(release_pins=False)
        return 0

    except CLI_ERRORS as e:
        logger.error(f"[CLI] {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        logger.info("[CLI] Stopped by user")
        return 0


if __name__ == "__main__":
    sys.exit(main())
