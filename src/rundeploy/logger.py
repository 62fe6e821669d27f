import logging

from rich.logging import RichHandler


def setup_logger(name: str = "rundeploy", level: int = logging.WARNING) -> logging.Logger:
    """Configures and returns a logger with RichHandler."""

    logger = logging.getLogger(name)

    # Avoid adding duplicate handlers if setup is called multiple times

    if not logger.handlers:
        logger.setLevel(level)

        handler = RichHandler(rich_tracebacks=True, markup=False, show_path=False)

        handler.setFormatter(logging.Formatter("%(message)s"))

        logger.addHandler(handler)

    else:
        logger.setLevel(level)

    return logger


def level_for_verbosity(verbosity: int) -> int:
    if verbosity >= 2:
        return logging.DEBUG
    if verbosity == 1:
        return logging.INFO
    return logging.WARNING


# Global logger instance (default to WARNING, `-v` raises it)


logger = setup_logger()
