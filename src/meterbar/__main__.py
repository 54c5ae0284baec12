import asyncio
import signal

import structlog
from prometheus_client import start_http_server

from meterbar.cache import MetricsCache
from meterbar.cli import parse_args
from meterbar.config import Config
from meterbar.credentials import DEFAULT_CURSOR_DB_PATHS, LocalCredentialStore
from meterbar.logging import setup_logging
from meterbar.metrics import RefreshMetrics
from meterbar.models import Aggregate, Source
from meterbar.orchestrator import RefreshOrchestrator
from meterbar.provider.base import SourceClient
from meterbar.provider.claude import ClaudeClient
from meterbar.provider.claude_code import ClaudeCodeClient
from meterbar.provider.cursor import CursorClient
from meterbar.provider.openai import OpenAIClient
from meterbar.publication import SharedPublicationStore
from meterbar.scheduler import IntervalScheduler

logger = structlog.get_logger()


def _parse_listen_address(addr: "str") -> "tuple[str, int]":
    """
    parses listen address in format ':9186' or '0.0.0.0:9186'.
    """
    if addr.startswith(":"):
        return ("0.0.0.0", int(addr[1:]))

    host, port = addr.rsplit(":", 1)
    return (host, int(port))


def build_clients(config: "Config") -> "dict[Source, SourceClient]":
    """
    the source registry: one client per tracked source.
    """
    return {
        Source.CLAUDE: ClaudeClient(config.claude_weekly_token_budget),
        Source.CLAUDE_CODE: ClaudeCodeClient(),
        Source.OPENAI: OpenAIClient(config.openai_weekly_token_budget),
        Source.CURSOR: CursorClient(),
    }


def build_credential_store(config: "Config") -> "LocalCredentialStore":
    cursor_paths = (
        (config.cursor_db_path,) if config.cursor_db_path else DEFAULT_CURSOR_DB_PATHS
    )
    return LocalCredentialStore(
        claude_admin_key=config.claude_admin_key,
        openai_admin_key=config.openai_admin_key,
        openai_org_id=config.openai_org_id,
        claude_code_credentials_path=config.claude_code_credentials_path,
        cursor_db_paths=cursor_paths,
    )


def format_aggregate(aggregate: "Aggregate") -> "list[str]":
    lines: "list[str]" = []
    for source in Source:
        snapshot = aggregate.get(source)
        if snapshot is None:
            lines.append(f"{source.display_name:<12} no data")
            continue

        for name, window in sorted(snapshot.windows.items()):
            reset = window.reset_time.isoformat() if window.reset_time else "-"
            lines.append(
                f"{source.display_name:<12} {name:<14} "
                f"{window.percentage:5.1f}%  {window.status.value:<8} resets {reset}"
            )
    return lines


def main() -> "None":
    config = parse_args()
    setup_logging(config.log_level, config.log_format)

    publication = SharedPublicationStore(
        config.resolved_shared_dir, config.publication_namespace
    )

    if config.read_published:
        for line in format_aggregate(publication.read()):
            print(line)
        return

    metrics = RefreshMetrics()
    orchestrator = RefreshOrchestrator(
        clients=build_clients(config),
        credentials=build_credential_store(config),
        cache=MetricsCache(config.resolved_cache_path),
        publication=publication,
        metrics=metrics,
        fetch_timeout_seconds=config.fetch_timeout,
    )

    if config.listen_address:
        host, port = _parse_listen_address(config.listen_address)
        start_http_server(port, addr=host)
        logger.info("metrics_server_started", host=host, port=port)

    scheduler = IntervalScheduler(config.refresh_interval)

    async def _run() -> "None":
        loop = asyncio.get_running_loop()
        # for SIGINT and SIGTERM, stop the scheduler so the
        # current cycle finishes its writes
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, scheduler.stop)

        try:
            if config.once:
                await orchestrator.refresh_all()
            else:
                await orchestrator.run(scheduler)
        finally:
            logger.info("shutting_down")
            await orchestrator.close()
            logger.info("shutdown_complete")

    asyncio.run(_run())


if __name__ == "__main__":
    main()
