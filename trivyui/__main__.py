"""Entry point for `python -m trivyui`.

Usage:
    python -m trivyui
    trivy-ui
"""

from __future__ import annotations

import asyncio

from trivyui.app import main


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
