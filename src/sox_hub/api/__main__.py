"""
sox_hub.api.__main__

`python -m sox_hub.api` runs the hub under uvicorn.
"""

from __future__ import annotations

import uvicorn

from sox_hub.api.app import create_app
from sox_hub.settings import get_settings


def main() -> None:
    settings = get_settings()
    # log_config=None leaves formatting to structlog.
    uvicorn.run(create_app(settings=settings), host=settings.api_host, port=settings.api_port, log_config=None)


if __name__ == "__main__":
    main()
