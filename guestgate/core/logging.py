import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(level: int = logging.INFO) -> None:
    root = logging.getLogger()
    root.setLevel(level)
    # Uvicorn reloads call this again; keep a single stream handler.
    for handler in root.handlers:
        if getattr(handler, "_guestgate", False):
            handler.setLevel(level)
            return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.setLevel(level)
    handler._guestgate = True
    root.addHandler(handler)

    # SQL echo is too chatty even in debug.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
