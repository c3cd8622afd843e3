import logging
import os

_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}

_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _coerce_level(value: str | int | None) -> int:
    if isinstance(value, str):
        return _LEVELS.get(value.upper().strip(), logging.INFO)
    if isinstance(value, int):
        return value
    return logging.INFO


def configure_logging() -> logging.Logger:
    """Configure the ``receiptwise`` package logger once per process.

    Call after the environment is final (``.env`` loaded): LOG_LEVEL
    (default INFO) sets the level, and LOG_FILE adds an appending file
    handler next to the stderr stream handler. Child loggers inherit both.
    Later calls return the logger unchanged.
    """
    root = logging.getLogger("receiptwise")
    if getattr(root, "_receiptwise_configured", False):
        return root

    root.setLevel(_coerce_level(os.environ.get("LOG_LEVEL", "INFO")))
    formatter = logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT)

    sh = logging.StreamHandler()
    sh.setFormatter(formatter)
    root.addHandler(sh)

    log_file = os.environ.get("LOG_FILE")
    if log_file:
        try:
            fh = logging.FileHandler(log_file, encoding="utf-8")
            fh.setFormatter(formatter)
            root.addHandler(fh)
        except OSError:
            root.warning("LOG_FILE could not be opened; continuing without file logging")

    setattr(root, "_receiptwise_configured", True)
    return root


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the ``receiptwise`` namespace."""
    if name.startswith("receiptwise"):
        return logging.getLogger(name)
    return logging.getLogger(f"receiptwise.{name}")
