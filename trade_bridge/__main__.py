"""
Run the execution bridge until SIGINT/SIGTERM

Usage:
    python -m trade_bridge                  # config/settings.yaml
    BRIDGE_CONFIG=path.yaml python -m trade_bridge
"""

import asyncio
import os

from .core.app import run_bridge


def main() -> None:
    asyncio.run(run_bridge(os.getenv("BRIDGE_CONFIG")))


if __name__ == "__main__":
    main()
