"""Run the API server with uvicorn."""

import uvicorn

from apps.api.config import get_settings
from apps.api.log import configure_logging

# In-flight requests get this long to finish after SIGINT/SIGTERM
GRACEFUL_SHUTDOWN_SECONDS = 10


def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)

    uvicorn.run(
        "apps.api.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_config=None,
        server_header=False,
        timeout_graceful_shutdown=GRACEFUL_SHUTDOWN_SECONDS,
    )


if __name__ == "__main__":
    main()
