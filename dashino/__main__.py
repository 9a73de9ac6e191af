"""Run the Dashino server: python -m dashino"""

import uvicorn

from .config import settings


def main() -> None:
    uvicorn.run(
        "dashino.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
