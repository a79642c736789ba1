import logging
from typing import List

from pbkeeper.local.console.handler import (
    check_configuration, handle_backups_command, print_help, start_supervisor, toggle_verbose_logging,
)

log = logging.getLogger(__name__)


def execute_command(command: str, args: List[str]) -> bool:
    """
    Executes a single command from the user.

    :param command: The main command string (e.g., 'start', 'backups').
    :param args: A list of arguments for the command.
    :return bool: True if the command succeeded, False otherwise.
    """
    log.debug(f"Executing command: {command}, args: {args}")
    command_map = {
        "start": start_supervisor,
        "check-config": check_configuration,
        "backups": lambda: handle_backups_command(args),
        "verbose": toggle_verbose_logging,
        "help": print_help,
    }

    if command not in command_map:
        log.info(f"Unknown command: '{command}'. Type 'help' for a list of commands.")
        return False

    result = command_map[command]()
    return result is not False
