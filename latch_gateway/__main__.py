import uvicorn

from latch_gateway.config import settings
from latch_gateway.logging_config import setup_logging


def main() -> None:
    setup_logging(settings.log_level)
    uvicorn.run("latch_gateway.main:app", host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
