import uvicorn

from mosaic_service.config import get_settings


def main():
    settings = get_settings()
    uvicorn.run(
        "mosaic_service.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
