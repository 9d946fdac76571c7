import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        resolved = logging.INFO
    logging.basicConfig(level=resolved, format=LOG_FORMAT)
    # engineio/socketio are chatty at INFO
    logging.getLogger("engineio").setLevel(max(resolved, logging.WARNING))
    logging.getLogger("socketio").setLevel(max(resolved, logging.WARNING))
