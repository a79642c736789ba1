import logging
from typing import List, Optional

log = logging.getLogger(__name__)

AUTH_FAILED_WARNING = "Client failed to authenticate - check superuser credentials"
UNREACHABLE_WARNING = "Check firewall/port forwarding settings"


def _combined_status(status) -> Optional[str]:
    """
    Folds authentication and public health into one status line.
    Authentication problems take priority. Adds the matching warning to status.
    """
    if status.client_authenticated is False:
        status.warnings.append(AUTH_FAILED_WARNING)
        return "✗ Authentication Failed"
    if status.client_authenticated is True:
        if status.expose_admin and status.health_check_passed is False:
            status.warnings.append(UNREACHABLE_WARNING)
            return "✗ Public URL Not Accessible"
        return "✓ Started"
    return None


def render_status(status) -> List[str]:
    """
    Builds the boxed startup summary for a StartupStatus.

    :return: The lines of the box, borders included.
    """
    health = _combined_status(status)

    if status.errors:
        title = "❌  PocketBase - Startup Failed"
    elif status.warnings:
        title = "⚠️  PocketBase - Running with Warnings"
    else:
        title = "✅  PocketBase - System Ready"

    content = [title, ""]
    content.append(f"Mode:     {'Public' if status.expose_admin else 'Internal'}")
    content.append(f"Binding:  {status.bind_address or '-'}")
    if status.expose_admin and status.public_url:
        content.append(f"Admin:    {status.public_url}/_/")
    if health:
        content.append(f"Status:   {health}")

    if status.generated_credentials:
        email, password = status.generated_credentials
        content.extend(["", f"Email:    {email}", f"Pass:     {password}"])

    if status.warnings:
        content.extend(["", "⚠️  Warnings:"])
        content.extend(f"   • {warning}" for warning in status.warnings)

    if status.errors:
        content.extend(["", "❌  Errors:"])
        content.extend(f"   • {error}" for error in status.errors)

    width = max(len(line) for line in content)
    border = "═" * (width + 4)
    lines = [f"╔{border}╗"]
    lines.extend(f"║  {line.ljust(width)}  ║" for line in content)
    lines.append(f"╚{border}╝")
    return lines


def report_status(status) -> None:
    """Prints the startup summary to the console."""
    lines = render_status(status)
    log.debug(f"Startup finished: {status!r}")
    print()
    for line in lines:
        print(line)
    print()
