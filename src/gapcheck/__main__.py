"""Entry point: python -m gapcheck [check|stats|frameworks]

- "check":      Validate every stored client/session record
- "stats":      Count stored clients and sessions
- "frameworks": List enabled frameworks and their question counts
"""

from __future__ import annotations

import asyncio
import logging
import sys

from gapcheck.config import GapcheckConfig, load_config
from gapcheck.frameworks import FrameworkCatalog
from gapcheck.store import EntityStore


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _run_check(config: GapcheckConfig) -> int:
    store = EntityStore(config.storage.data_path)
    problems = asyncio.run(store.validate_data_integrity())
    if not problems:
        print(f"OK: {config.storage.data_path}")
        return 0
    for problem in problems:
        print(f"  {problem}")
    print(f"{len(problems)} problem(s) found in {config.storage.data_path}")
    return 1


def _run_stats(config: GapcheckConfig) -> int:
    store = EntityStore(config.storage.data_path)
    stats = asyncio.run(store.storage_stats())
    print(f"Clients:  {stats.total_clients}")
    print(f"Sessions: {stats.total_sessions}")
    if stats.corrupt_records:
        print(f"Corrupt:  {len(stats.corrupt_records)}")
    return 0


def _run_frameworks(config: GapcheckConfig) -> int:
    catalog = FrameworkCatalog(config.frameworks.root, config.frameworks.config_file)
    frameworks = catalog.list_frameworks()
    if not frameworks:
        print(f"No frameworks found under {config.frameworks.root}")
        return 1
    for framework in frameworks:
        print(
            f"{framework.id:<20} {len(framework.domains):>3} domains "
            f"{framework.total_questions:>4} questions  {framework.name}"
        )
    return 0


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else "check"
    commands = {"check": _run_check, "stats": _run_stats, "frameworks": _run_frameworks}

    if cmd not in commands:
        print("Usage: python -m gapcheck [check|stats|frameworks]")
        print("  check       - Validate stored records (default)")
        print("  stats       - Count stored clients and sessions")
        print("  frameworks  - List enabled frameworks")
        sys.exit(1)

    config = load_config()
    _setup_logging(config.log_level)
    sys.exit(commands[cmd](config))


if __name__ == "__main__":
    main()
