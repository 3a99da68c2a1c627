import logging
from typing import Any, Optional, Union

LOG_FORMAT = '%(asctime)s %(levelname)s %(name)s %(message)s'


def setup_logging(level: Union[str, int, None] = None, verbose: bool = False) -> logging.Logger:
    """Attach a stream handler to the ``service_io`` logger (once)."""
    logger = logging.getLogger('service_io')
    if level is None:
        level = logging.DEBUG if verbose else logging.INFO
    elif isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    logger.setLevel(level)
    if not logger.handlers:
        ch = logging.StreamHandler()
        ch.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(ch)
    return logger


def short(obj: Any, limit: Optional[int] = 40) -> str:
    try:
        s = str(obj)
    except Exception:
        try:
            s = repr(obj)
        except Exception:
            return '<unprintable>'
    if limit is None or len(s) <= limit:
        return s
    return s[:limit] + '...'
