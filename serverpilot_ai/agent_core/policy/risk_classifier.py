"""Pattern-based risk classification of shell commands.

Patterns are checked in severity order: blocked, obfuscation, dangerous,
caution, safe. A command that matches nothing is ``caution``. Compound commands
(``&&``, ``||``, ``;``, ``|``) are split and rated by their riskiest part, and a
leading ``sudo`` is ignored when matching.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Pattern, Sequence

from ..schemas.domain import RiskAssessment, RiskLevel
from .models import RiskPolicy, risk_rank

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RiskPattern:
    pattern: Pattern[str]
    level: RiskLevel
    category: str
    reason: str
    warning_message: Optional[str] = None


def _p(regex: str, level: RiskLevel, category: str, reason: str, warning: Optional[str] = None) -> RiskPattern:
    return RiskPattern(re.compile(regex), level, category, reason, warning)


BLOCKED_PATTERNS: Sequence[RiskPattern] = (
    _p(
        r"rm\s+(-[a-zA-Z]*f[a-zA-Z]*\s+)?(-[a-zA-Z]*r[a-zA-Z]*\s+)?/\s*$",
        RiskLevel.blocked,
        "filesystem-destruction",
        "Recursive deletion of root filesystem",
        "This command would destroy the entire filesystem.",
    ),
    _p(
        r"rm\s+(-[a-zA-Z]*r[a-zA-Z]*\s+)?(-[a-zA-Z]*f[a-zA-Z]*\s+)?/\s*$",
        RiskLevel.blocked,
        "filesystem-destruction",
        "Recursive deletion of root filesystem",
        "This command would destroy the entire filesystem.",
    ),
    _p(
        r"dd\s+.*of=/dev/[sh]d[a-z]\b",
        RiskLevel.blocked,
        "disk-overwrite",
        "Direct write to system disk",
        "This command would overwrite a disk device directly.",
    ),
    _p(r"mkfs\.\w+\s+/dev/[sh]d[a-z][0-9]?", RiskLevel.blocked, "filesystem-format", "Formatting a disk partition"),
    _p(r":\(\)\s*\{\s*:\|:\s*&\s*\}\s*;?\s*:", RiskLevel.blocked, "fork-bomb", "Fork bomb detected"),
    _p(r">\s*/dev/[sh]d[a-z]", RiskLevel.blocked, "disk-overwrite", "Redirecting output to disk device"),
)

OBFUSCATION_PATTERNS: Sequence[RiskPattern] = (
    _p(
        r"base64\s+-d.*\|\s*(bash|sh)",
        RiskLevel.dangerous,
        "obfuscated-execution",
        "Base64-encoded command piped to shell",
        "This command decodes and executes hidden content. Review carefully.",
    ),
    _p(
        r"eval\s+\$",
        RiskLevel.dangerous,
        "obfuscated-execution",
        "eval with variable expansion cannot be statically verified",
    ),
    _p(
        r"\\x[0-9a-fA-F]{2}.*\|\s*(bash|sh)",
        RiskLevel.dangerous,
        "obfuscated-execution",
        "Hex-encoded command piped to shell",
    ),
)

DANGEROUS_PATTERNS: Sequence[RiskPattern] = (
    _p(
        r"rm\s+(-[a-zA-Z]*r[a-zA-Z]*|-[a-zA-Z]*f[a-zA-Z]*)",
        RiskLevel.dangerous,
        "recursive-delete",
        "Recursive or forced file deletion",
        "This will permanently delete files. This action cannot be undone.",
    ),
    _p(
        r"apt(-get)?\s+(remove|purge|autoremove)",
        RiskLevel.dangerous,
        "package-removal",
        "Removing software packages",
        "Removing packages may affect other services.",
    ),
    _p(r"systemctl\s+(disable|mask|stop)\s+", RiskLevel.dangerous, "service-modification", "Disabling or stopping system services"),
    _p(r"userdel|groupdel", RiskLevel.dangerous, "user-modification", "Deleting users or groups"),
    _p(r"chmod\s+[0-7]*[0-7]{3}", RiskLevel.dangerous, "permission-change", "Changing file permissions"),
    _p(r"chown\s+", RiskLevel.dangerous, "ownership-change", "Changing file ownership"),
    _p(r"iptables|ufw\s+(deny|delete|reset)", RiskLevel.dangerous, "firewall-modification", "Modifying firewall rules"),
    _p(r"reboot|shutdown|init\s+[0-6]", RiskLevel.dangerous, "system-power", "System reboot or shutdown"),
    _p(r">\s*/etc/", RiskLevel.dangerous, "config-overwrite", "Overwriting system configuration file"),
    _p(r"passwd", RiskLevel.dangerous, "credential-change", "Changing user passwords"),
)

CAUTION_PATTERNS: Sequence[RiskPattern] = (
    _p(r"apt(-get)?\s+install", RiskLevel.caution, "package-install", "Installing new software"),
    _p(r"apt(-get)?\s+update", RiskLevel.caution, "package-update", "Updating package lists"),
    _p(r"apt(-get)?\s+upgrade", RiskLevel.caution, "package-upgrade", "Upgrading installed packages"),
    _p(r"(dnf|yum)\s+install", RiskLevel.caution, "package-install", "Installing new software"),
    _p(r"systemctl\s+(start|restart|enable)", RiskLevel.caution, "service-modification", "Starting or restarting services"),
    _p(r"pip3?\s+install", RiskLevel.caution, "package-install", "Installing Python packages"),
    _p(r"npm\s+install", RiskLevel.caution, "package-install", "Installing Node.js packages"),
    _p(
        r"curl\s+.*\|\s*(sudo\s+)?(bash|sh)",
        RiskLevel.caution,
        "remote-execution",
        "Downloading and executing remote script",
        "This pipes a remote script directly into a shell. Review the source first.",
    ),
    _p(r"sudo\s+tee", RiskLevel.caution, "file-write", "Writing to file with elevated privileges"),
    _p(r"mkdir\s+", RiskLevel.caution, "filesystem-create", "Creating directories"),
)

_SAFE_COMMANDS = (
    (r"^ls(\s|$)", "List files"),
    (r"^cat\s", "Display file contents"),
    (r"^head\s", "Display file head"),
    (r"^tail\s", "Display file tail"),
    (r"^pwd$", "Print working directory"),
    (r"^whoami$", "Display current user"),
    (r"^df(\s|$)", "Disk usage"),
    (r"^du\s", "Directory usage"),
    (r"^free(\s|$)", "Memory usage"),
    (r"^uptime$", "System uptime"),
    (r"^uname(\s|$)", "System info"),
    (r"^ps(\s|$)", "Process list"),
    (r"^top\s+-bn1", "Process snapshot"),
    (r"^systemctl\s+status", "Service status"),
    (r"^journalctl", "View logs"),
    (r"^grep\s", "Search text"),
    (r"^find\s", "Find files"),
    (r"^which\s", "Locate command"),
    (r"^echo\s", "Print text"),
    (r"^date(\s|$)", "Display date"),
    (r"^hostname(\s|$)", "Display hostname"),
    (r"^ip\s+(addr|a|link|route)", "Network info"),
    (r"^ss(\s|$)", "Socket stats"),
    (r"^netstat", "Network stats"),
    (r"^env$", "Environment variables"),
    (r"^printenv", "Print environment variable"),
    (r"^lscpu$", "CPU info"),
    (r"^lsblk$", "Block device info"),
    (r"^lsof", "Open files list"),
    (r"^ping\s+", "Network ping"),
    (r"^curl\s+-[sI]", "HTTP request (silent/head)"),
    (r"^wget\s+--spider", "Check URL"),
    (r"^dpkg\s+-l", "List installed packages"),
    (r"^apt(-get)?\s+(list|show|search)", "Package query"),
)

SAFE_PATTERNS: Sequence[RiskPattern] = tuple(_p(rx, RiskLevel.safe, "read", reason) for rx, reason in _SAFE_COMMANDS)

_COMPOUND_SPLIT = re.compile(r"\s*(?:&&|\|\||;|\|)\s*")
_SUDO_PREFIX = re.compile(r"^sudo\s+")

_DEFAULT_BLOCKED_WARNING = "This command is blocked for safety."


def _matches(entry: str, command: str) -> bool:
    try:
        return re.search(entry, command) is not None
    except re.error:
        return entry in command


class RiskClassifier:
    """Classify shell commands into ``RiskLevel`` buckets."""

    def __init__(self, policy: Optional[RiskPolicy] = None) -> None:
        self._policy = policy or RiskPolicy()

    @property
    def policy(self) -> RiskPolicy:
        return self._policy

    def classify(self, command: str) -> RiskAssessment:
        trimmed = command.strip()

        if any(_matches(p, trimmed) for p in self._policy.blacklist):
            return RiskAssessment(
                level=RiskLevel.blocked,
                category="user-blacklisted",
                reason="Command matches user blacklist pattern",
                warning_message="This command has been blocked by your configuration.",
            )
        if any(_matches(p, trimmed) for p in self._policy.whitelist):
            return RiskAssessment(
                level=RiskLevel.safe,
                category="user-whitelisted",
                reason="Command matches user whitelist pattern",
            )

        parts = [p.strip() for p in _COMPOUND_SPLIT.split(trimmed) if p.strip()]
        if len(parts) > 1:
            # The whole line still has to be checked: some patterns span a pipe.
            assessments = [self._classify_single(trimmed, whole_line=True)] + [self._classify_single(p) for p in parts]
            highest = max(assessments, key=lambda a: risk_rank(a.level))
            return highest.model_copy(update={"reason": f"Compound command, highest risk component: {highest.reason}"})

        return self._classify_single(trimmed)

    def is_blocked(self, command: str) -> bool:
        return self.classify(command).level == RiskLevel.blocked

    def _classify_single(self, command: str, *, whole_line: bool = False) -> RiskAssessment:
        without_sudo = _SUDO_PREFIX.sub("", command)
        groups: List[Sequence[RiskPattern]] = [BLOCKED_PATTERNS, OBFUSCATION_PATTERNS, DANGEROUS_PATTERNS, CAUTION_PATTERNS]
        if not whole_line:
            groups.append(SAFE_PATTERNS)

        for group in groups:
            for p in group:
                if p.pattern.search(command) or p.pattern.search(without_sudo):
                    warning = p.warning_message
                    if p.level == RiskLevel.blocked and warning is None:
                        warning = _DEFAULT_BLOCKED_WARNING
                    return RiskAssessment(level=p.level, category=p.category, reason=p.reason, warning_message=warning)

        if whole_line:
            return RiskAssessment(level=RiskLevel.safe, category="compound", reason="No whole-line pattern matched")
        return RiskAssessment(
            level=RiskLevel.caution,
            category="unknown",
            reason="Command not in known patterns, defaulting to caution",
        )
