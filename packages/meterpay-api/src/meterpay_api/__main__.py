"""Run the API with uvicorn: ``python -m meterpay_api``."""
from __future__ import annotations

import uvicorn

from meterpay_core import load_settings


def main() -> None:
    settings = load_settings()
    uvicorn.run(
        "meterpay_api.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
