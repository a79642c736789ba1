import logging
import sys


class MainFormatter(logging.Formatter):
    """A custom formatter to handle regular logs and raw subprocess logs."""

    def format(self, record):
        # Subprocess output is passed through with a short tag only.
        if record.name.startswith('proc.'):
            return f"[{record.name.split('.', 1)[1]}] {record.getMessage()}"

        original_format = self._style._fmt
        self._style._fmt = '%(asctime)s - %(levelname)-8s - [%(name)s] - %(message)s'
        formatted_message = super().format(record)
        self._style._fmt = original_format
        return formatted_message


def setup_logging(console_level: int = logging.INFO) -> None:
    """
    Configures the root logger for the supervisor.
    Clears any previously configured handlers to prevent duplication.

    :param console_level: The logging level for the console output (e.g., logging.INFO).
    """
    root_logger = logging.getLogger()
    # Set root level to lowest to capture all messages for handler filtering
    root_logger.setLevel(logging.DEBUG)

    if root_logger.hasHandlers():
        root_logger.handlers.clear()

    # --- Console Handler ---
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(MainFormatter())
    root_logger.addHandler(console_handler)

    # requests/urllib3 are chatty at DEBUG; keep them out of verbose output.
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def set_console_level(level: int) -> bool:
    """
    Changes the level of the console handler installed by setup_logging.

    :param level: The new logging level.
    :return: True if a console handler was found and updated.
    """
    for handler in logging.getLogger().handlers:
        if isinstance(handler, logging.StreamHandler):
            handler.setLevel(level)
            return True
    return False
