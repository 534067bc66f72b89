from .base import Operation
from .command import CommandOperation, ShellOperation
from .debug import DebugOperation
from .file import CopyOperation, FileOperation
from .firewall import FirewallOperation
from .lineinfile import LineInFileOperation
from .package import PackageOperation
from .pause import PauseOperation
from .service import ServiceOperation
from .set_fact import SetFactOperation
from .timezone import TimezoneOperation

OPERATION_REGISTRY = {
    "package": PackageOperation,
    "file": FileOperation,
    "copy": CopyOperation,
    "lineinfile": LineInFileOperation,
    "service": ServiceOperation,
    "firewall": FirewallOperation,
    "command": CommandOperation,
    "shell": ShellOperation,
    "set_fact": SetFactOperation,
    "pause": PauseOperation,
    "debug": DebugOperation,
    "timezone": TimezoneOperation,
}

# Alternative spellings accepted in playbooks.
ALIASES = {
    "apt": "package",
    "dnf": "package",
    "yum": "package",
    "systemd": "service",
    "iptables": "firewall",
    "line-in-file": "lineinfile",
    "fact-set": "set_fact",
    "debug-print": "debug",
}

__all__ = [
    "Operation",
    "PackageOperation",
    "FileOperation",
    "CopyOperation",
    "LineInFileOperation",
    "ServiceOperation",
    "FirewallOperation",
    "CommandOperation",
    "ShellOperation",
    "SetFactOperation",
    "PauseOperation",
    "DebugOperation",
    "TimezoneOperation",
    "OPERATION_REGISTRY",
    "ALIASES",
]
