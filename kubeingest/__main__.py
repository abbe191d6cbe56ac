"""Entry point for `python -m kubeingest`.

Usage:
    python -m kubeingest
    uv run python -m kubeingest
"""

from __future__ import annotations

import asyncio

from kubeingest.app import main

asyncio.run(main())
