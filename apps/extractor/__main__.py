"""
Extractor Module Entry Point

Allows execution via: python -m apps.extractor

Delegates to scheduler for all execution modes (scheduled and RUN_ONCE).
"""

import asyncio

from apps.extractor.scheduler import main


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
