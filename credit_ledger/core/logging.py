import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    # SQL echo is controlled by the engine, keep the driver quiet otherwise.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
