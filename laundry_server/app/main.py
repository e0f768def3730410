# laundry_server/app/main.py
import logging
import uvicorn
from . import config


def configure_logging(level: str = config.LOG_LEVEL):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main():
    configure_logging()
    logging.getLogger("laundry").info("starting laundry order API on %s:%s", config.HOST, config.PORT)
    uvicorn.run("laundry_server.app.api:app", host=config.HOST, port=config.PORT, log_level=config.LOG_LEVEL)


if __name__ == '__main__':
    main()
