import logging
import logging.handlers
import multiprocessing as mp
from typing import Optional

_LOGGER_NAME = "deepzoom"
_FORMAT = "%(asctime)s.%(msecs)03dZ %(processName)s/%(threadName)s %(levelname)s %(name)s - %(message)s"
_DATEFMT = "%Y-%m-%dT%H:%M:%S"


def get_logger(suffix: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(f"{_LOGGER_NAME}.{suffix}" if suffix else _LOGGER_NAME)


def _detach(logger: logging.Logger, level: int) -> None:
    logger.setLevel(level)
    logger.propagate = False
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()


def _formatted(handler: logging.Handler, level: int) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT))
    return handler


def configure_logging(
    *,
    level: int = logging.INFO,
    console: bool = True,
    log_file: Optional[str] = "deepzoom.log",
    rotate_bytes: int = 5 * 1024 * 1024,
    rotate_count: int = 5,
) -> logging.Logger:
    """Console and rotating-file output for the controller process.

    Strip callbacks run on executor threads, so records carry the thread name next to
    the process name.
    """
    logger = get_logger()
    _detach(logger, level)
    if console:
        logger.addHandler(_formatted(logging.StreamHandler(), level))
    if log_file:
        rotating = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=rotate_bytes, backupCount=rotate_count, encoding="utf-8"
        )
        logger.addHandler(_formatted(rotating, level))
    return logger


class WorkerLogRelay:
    """Carries records from pool processes to the controller's handlers.

    Pass ``queue`` to the pool initializer. ``stop`` drains whatever is still queued.
    """

    def __init__(self, target: logging.Logger) -> None:
        self.queue = mp.Queue(-1)
        self._listener = logging.handlers.QueueListener(self.queue, *target.handlers, respect_handler_level=True)

    def start(self) -> "WorkerLogRelay":
        self._listener.start()
        return self

    def stop(self) -> None:
        self._listener.stop()

    def __enter__(self) -> "WorkerLogRelay":
        return self.start()

    def __exit__(self, *exc) -> None:
        self.stop()


def configure_worker_logging(queue: mp.Queue, *, level: int = logging.INFO) -> None:
    logger = get_logger()
    _detach(logger, level)
    relay = logging.handlers.QueueHandler(queue)
    relay.setLevel(level)
    logger.addHandler(relay)


def worker_initialiser(queue: Optional[mp.Queue], level: int) -> None:
    """Process-pool initializer. Without a queue, workers keep the default (silent) logger."""
    if queue is not None:
        configure_worker_logging(queue, level=level)
