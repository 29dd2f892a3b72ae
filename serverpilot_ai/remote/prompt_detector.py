"""Recognise output that shows a command waiting for keyboard input.

Commands run without a human at the keyboard, so a confirmation or password
prompt stalls them until the timeout. These helpers look at the tail of a
command's output and name the prompt they find, most specific pattern first.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Pattern, Tuple

CHUNK_WINDOW = 500
DEEP_WINDOW = 2000

# Broad "ends with a colon" patterns are left out: apt progress lines such as
# "Get:4 https://... InRelease" would match them.
PROMPT_PATTERNS: Tuple[Tuple[Pattern[str], str], ...] = tuple(
    (re.compile(pattern, flags), label)
    for pattern, flags, label in (
        (r"\[Y/n\]", re.I, "yes/no choice"),
        (r"\(y/n\)", re.I, "yes/no choice"),
        (r"\[yes/no\]|\(yes/no\)", re.I, "yes/no choice"),
        (r"\(yes/no/\[fingerprint\]\)", re.I, "ssh host key"),
        (r"Are you sure you want to continue connecting", re.I, "ssh host key"),
        (r"Do you want to continue\s*\?", re.I, "continue prompt"),
        (r"\bdo you want to\b", re.I, "continue prompt"),
        (r"Proceed\s*\?\s*$", re.I | re.M, "proceed prompt"),
        (r"Is this ok\s*\[", re.I, "yum confirmation"),
        (r"install these packages\?", re.I, "install confirmation"),
        (r"\bare you sure\?", re.I, "confirmation"),
        (r"\bconfirm\?", re.I, "confirmation"),
        (r"\[sudo\] password for", re.I, "sudo password"),
        (r"Enter new.*password", re.I, "new password"),
        (r"Retype new.*password", re.I, "new password"),
        (r"Current password", re.I, "password"),
        (r"[Pp]assword\s*:", 0, "password"),
        (r"Enter passphrase|[Pp]assphrase\s*:", re.I, "passphrase"),
        (r"Username for", re.I, "git credentials"),
        (r"Password for", re.I, "git credentials"),
        (r"Press \[?ENTER\]? to continue|Hit ENTER or type", re.I, "press enter"),
        (r"Press any key", re.I, "press any key"),
        (r"Type .+ to confirm", re.I, "typed confirmation"),
        (r"\boverwrite\?|\breplace\?", re.I, "overwrite prompt"),
        (r"\(END\)|---More---", 0, "pager"),
    )
)


@dataclass(frozen=True)
class PromptDetection:
    """A prompt found in command output.

    Attributes:
        prompt_text: The output line that carries the prompt, stripped.
        pattern: Short label of the matched prompt kind.
    """

    prompt_text: str
    pattern: str


def detect_prompt(text: str, window: int = CHUNK_WINDOW) -> Optional[PromptDetection]:
    """Return the first prompt found in the last ``window`` characters of ``text``."""
    tail = text[-window:]
    for pattern, label in PROMPT_PATTERNS:
        if pattern.search(tail) is None:
            continue
        line = next((ln for ln in reversed(tail.splitlines()) if pattern.search(ln)), "")
        return PromptDetection(prompt_text=line.strip(), pattern=label)
    return None


def detect_prompt_deep(text: str) -> Optional[PromptDetection]:
    """Scan a wider window, for prompts preceded by a lot of output."""
    return detect_prompt(text, DEEP_WINDOW)
