"""Run the API with uvicorn: ``python -m coursegate``."""

import uvicorn

from coursegate.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "coursegate.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.is_development,
    )


if __name__ == "__main__":
    main()
