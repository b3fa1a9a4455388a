"""Run the API server with ``python -m medpredict``."""

import uvicorn

from medpredict.config.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "medpredict.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
