"""Command line entry points for the relay and the poller."""

import signal
import sys

import typer
from PySide6.QtCore import QCoreApplication

from usage_relay.client import ClaudeWebClient, RelayClient
from usage_relay.config import Settings
from usage_relay.logger import get_logger, setup_logging
from usage_relay.models import UsageSnapshot
from usage_relay.poller import PollResult, UsagePollCycle, UsagePoller
from usage_relay.resolver import OrganizationCache
from usage_relay.server import LocalRelayServer
from usage_relay.store import EphemeralFileStore

app = typer.Typer(help="Relay Claude usage snapshots to local tools.", no_args_is_help=True)
log = get_logger("cli")


def _log_snapshot(snapshot: UsageSnapshot):
    log.info(
        "usage_received",
        summary=snapshot.summary(),
        warning=snapshot.is_warning,
        five_hour_resets_in=snapshot.five_hour.time_remaining(),
        seven_day_resets_in=snapshot.seven_day.time_remaining() if snapshot.seven_day else None,
        updated_at=snapshot.updated_at,
    )


def _log_result(result: PollResult):
    text, color = result.badge
    if result.ok:
        log.info("poll_succeeded", summary=result.snapshot.summary(), badge=text, color=color)
    else:
        log.info("poll_status", error=result.error.message, badge=text, color=color)


def _build_cycle(settings: Settings, push: bool = True) -> UsagePollCycle:
    client = ClaudeWebClient(
        settings.session_key,
        base_url=settings.claude_base_url,
        timeout=settings.request_timeout,
    )
    emitters = [RelayClient(settings.relay_url)] if push else []
    return UsagePollCycle(client, OrganizationCache(), emitters)


@app.command()
def serve():
    """Accept pushed snapshots on the loopback relay port."""
    settings = Settings()
    setup_logging(settings.log_level)
    store = EphemeralFileStore(
        settings.data_file,
        grace_seconds=settings.grace_seconds,
        freshness_seconds=settings.freshness_seconds,
    )
    server = LocalRelayServer(store, _log_snapshot, host=settings.relay_host, port=settings.relay_port)
    if not server.serve():
        typer.echo(f"Port {settings.relay_port} is already in use; another relay is serving this machine.")


@app.command()
def poll():
    """Poll claude.ai on a timer and push each snapshot to the relay."""
    settings = Settings()
    setup_logging(settings.log_level)
    if not settings.session_key:
        log.warning("session_key_missing", hint="set USAGE_RELAY_SESSION_KEY")

    qt_app = QCoreApplication(sys.argv)
    qt_app.setApplicationName("Claude Usage Relay")
    signal.signal(signal.SIGINT, signal.SIG_DFL)

    poller = UsagePoller(
        _build_cycle(settings),
        interval_s=settings.poll_interval_seconds,
        initial_delay_s=settings.poll_initial_delay_seconds,
    )
    poller.polled.connect(_log_result)
    qt_app.aboutToQuit.connect(poller.stop)
    poller.start()

    sys.exit(qt_app.exec())


@app.command()
def once(push: bool = typer.Option(True, help="Also push the snapshot to the relay.")):
    """Run a single poll cycle and print the result."""
    settings = Settings()
    setup_logging(settings.log_level)
    result = _build_cycle(settings, push=push).run()
    if not result.ok:
        typer.echo(result.error.message, err=True)
        raise typer.Exit(code=1)
    typer.echo(result.snapshot.summary())


def main():
    app()


if __name__ == "__main__":
    main()
