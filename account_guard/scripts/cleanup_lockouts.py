# SPDX-License-Identifier: Apache-2.0
# Copyright 2025 Vova Orig

"""Run one lockout cleanup sweep against the configured database."""

from __future__ import annotations

import argparse
import asyncio

from account_guard.container import Container
from account_guard.infrastructure.db import init_db
from account_guard.shared.logging import correlation_scope, logger, setup_logging


async def run_cleanup(container: Container, timeout: float | None = None) -> int:
    with correlation_scope() as sweep_id:
        logger.info(f"cleanup sweep: started id={sweep_id}")
        result = await container.lockout_engine.perform_automated_cleanup(timeout=timeout)
        logger.info(
            f"cleanup sweep: expired={result.expired_lockouts_cleared} "
            f"cache_purged={result.blocked_ips_cleared} duration={result.cleanup_duration}"
        )
        for error in result.errors:
            logger.error(f"cleanup sweep: {error}")
    return 0 if result.was_successful else 1


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Release expired account lockouts")
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Per-call timeout in seconds (defaults to RESILIENCE_TIMEOUT)",
    )
    parser.add_argument("--log-level", default=None, help="Override the log level")
    args = parser.parse_args(argv)

    container = Container()
    setup_logging(level=args.log_level, debug=container.settings.debug_logging)
    init_db(container.engine)
    return asyncio.run(run_cleanup(container, timeout=args.timeout))


if __name__ == "__main__":
    raise SystemExit(main())
