# longform/engine/logconf.py
import datetime
import logging
import pathlib
import sys


def init(level: str = "INFO", log_dir: pathlib.Path | None = None) -> None:
    """Configure root logger once per run; adds a dated log file when *log_dir* is given."""
    fmt = "%(asctime)s | %(levelname)-5s | %(module)s | %(message)s"
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_dir is not None:
        log_dir = pathlib.Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(
            logging.FileHandler(log_dir / f"driver_{datetime.date.today()}.log", encoding="utf-8")
        )
    logging.basicConfig(
        level=getattr(logging, level.upper(), 20),
        format=fmt,
        handlers=handlers,
        force=True,
    )
