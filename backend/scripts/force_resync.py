"""CLI helper for pushing locally created records to Supabase and refreshing the cache."""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from typing import List

from tailorflow_core import (
    EntityStore,
    GatewayError,
    LocalStorageError,
    RemoteGateway,
    Session,
    SupabaseAuth,
    SyncCoordinator,
)
from tailorflow_core.drain import CollectionReport, DrainReport


def _format_section(name: str, stats: CollectionReport) -> str:
    lines = [f"{name}: {stats.promoted} promoted, {stats.pending} pending, {stats.skipped} skipped"]
    for item in stats.errors:
        lines.append(f"  - {item}")
    return "\n".join(lines)


async def _session() -> Session:
    token = os.getenv("TAILORFLOW_ACCESS_TOKEN", "").strip()
    shop_id = os.getenv("TAILORFLOW_SHOP_ID", "").strip()
    if token and shop_id:
        return Session(access_token=token, tenant_scope=shop_id)

    email = os.getenv("TAILORFLOW_EMAIL", "").strip()
    password = os.getenv("TAILORFLOW_PASSWORD", "")
    if not (email and password):
        raise GatewayError(
            "Set TAILORFLOW_ACCESS_TOKEN and TAILORFLOW_SHOP_ID, or TAILORFLOW_EMAIL and TAILORFLOW_PASSWORD",
            operation="sign_in",
        )
    return await SupabaseAuth().sign_in(email, password)


async def run(coordinator: SyncCoordinator | None = None) -> DrainReport | None:
    if coordinator is None:
        coordinator = SyncCoordinator(EntityStore(), RemoteGateway())
    coordinator.use_session(await _session())
    return await coordinator.force_resync()


def main() -> int:
    logging.basicConfig(level=os.getenv("TAILORFLOW_LOG_LEVEL", "INFO"))
    try:
        report = asyncio.run(run())
    except (GatewayError, LocalStorageError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    if report is None:
        print("ERROR: no authenticated session for the configured shop", file=sys.stderr)
        return 1

    for name, stats in report.collections.items():
        print(_format_section(name.capitalize(), stats))
    if report.connectivity_failed:
        print()
        print("Supabase could not be reached; remaining records stay queued locally.")

    errors: List[str] = [item for stats in report.collections.values() for item in stats.errors]
    return 1 if errors or report.connectivity_failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
