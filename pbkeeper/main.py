import sys
import logging

from pbkeeper import settings
from pbkeeper.log import setup_logging
import pbkeeper.local.console as console

log = logging.getLogger("console")


def main() -> None:
    """The main entry point for the command line."""
    args = sys.argv[1:]
    verbose = settings.VERBOSE_LOGGING
    if "--verbose" in args:
        verbose = True
        args.remove("--verbose")

    settings.VERBOSE_LOGGING = verbose
    setup_logging(logging.DEBUG if verbose else logging.INFO)

    command, args = (args[0].lower(), args[1:]) if args else ("start", [])
    log.debug(f"Received command: {command}, args: {args}")

    try:
        ok = console.execute_command(command, args)
    except KeyboardInterrupt:
        log.warning("Interrupted.")
        ok = False
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
