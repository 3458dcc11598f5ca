"""Idempotent patching of line-oriented configuration files.

A RuleBlock is a named run of lines with a detection marker and an
anchor. apply_blocks() inserts every block whose marker is not already
present next to the first line matching its anchor, and leaves every other
line exactly where it was. Running it again on its own output changes
nothing.

apply_toggles() is the single-line variant used for sysctl-style
``key=value`` files: commented settings are uncommented, missing ones are
appended, active ones are left alone.

Both functions are pure. Loading, backing up and writing the file is the
caller's job (see TargetFile and services.ufw).
"""

import difflib
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Sequence

from vpnsetup.core.exceptions import AnchorNotFoundError, FirewallError


class MatchMode(str, Enum):
    """How a LinePattern is compared against a line."""
    PREFIX = "prefix"
    CONTAINS = "contains"


@dataclass(frozen=True)
class LinePattern:
    """A line-matching rule used for markers and anchors."""
    text: str
    mode: MatchMode = MatchMode.PREFIX

    def matches(self, line: str) -> bool:
        line = line.rstrip("\r\n")
        if self.mode is MatchMode.PREFIX:
            return line.startswith(self.text)
        return self.text in line

    def __str__(self) -> str:
        return f"{self.mode.value}:{self.text}"


def prefix(text: str) -> LinePattern:
    return LinePattern(text, MatchMode.PREFIX)


def contains(text: str) -> LinePattern:
    return LinePattern(text, MatchMode.CONTAINS)


class Side(str, Enum):
    """Which side of the anchor line a block goes on."""
    BEFORE = "before"
    AFTER = "after"


@dataclass(frozen=True)
class RuleBlock:
    """A named stanza to be present exactly once in a target file.

    Attributes:
        name: Identifier used in reports and errors
        marker: Pattern whose presence means the block is already applied
        lines: The stanza, without line terminators
        anchor: Pattern locating the insertion point
        side: Insert before or after the anchor line
    """
    name: str
    marker: LinePattern
    lines: tuple[str, ...]
    anchor: LinePattern
    side: Side = Side.BEFORE

    def __post_init__(self) -> None:
        if not self.lines:
            raise ValueError(f"Rule block '{self.name}' has no lines")
        if not any(self.marker.matches(line) for line in self.lines):
            # A block that cannot detect itself would be inserted on every run
            raise ValueError(f"Rule block '{self.name}' does not contain its own marker")


class PatchAction(str, Enum):
    """What happened to one block or toggle."""
    PRESENT = "present"
    INSERTED = "inserted"
    APPENDED = "appended"
    UNCOMMENTED = "uncommented"
    REPLACED = "replaced"


@dataclass
class PatchResult:
    """Updated lines plus a per-block account of what was done."""
    lines: list[str]
    actions: dict[str, PatchAction] = field(default_factory=dict)

    @property
    def changed(self) -> bool:
        return any(action is not PatchAction.PRESENT for action in self.actions.values())

    def names(self, action: PatchAction) -> list[str]:
        return [name for name, done in self.actions.items() if done is action]


# Tags parallel to the working line list: the original index for lines of
# the input, or a marker for lines this call inserted.
_INSERTED = -1


def apply_blocks(
    original: Sequence[str],
    blocks: Sequence[RuleBlock],
    *,
    on_missing_anchor: str = "raise",
    path: Optional[str] = None,
) -> PatchResult:
    """Insert each missing block at its anchor.

    Args:
        original: Current file content as lines without terminators. Empty
            means the file does not exist yet; blocks are then appended in
            order.
        blocks: Blocks in the order they should be applied
        on_missing_anchor: "raise" (AnchorNotFoundError) or "append" (place
            the block at end of file and report it as APPENDED)
        path: File name used in error messages

    Returns:
        PatchResult with the new lines and one action per block

    Raises:
        AnchorNotFoundError: If a block's anchor is absent and the policy
            is "raise"
    """
    if on_missing_anchor not in ("raise", "append"):
        raise ValueError(f"Unknown missing-anchor policy: {on_missing_anchor}")

    lines = list(original)
    tags: list[tuple[int, Optional[int]]] = [(i, None) for i in range(len(lines))]
    synthesize = not lines
    result = PatchResult(lines=lines)

    for block in blocks:
        if any(block.marker.matches(line) for line in lines):
            result.actions[block.name] = PatchAction.PRESENT
            continue

        anchor_pos = None
        if not synthesize:
            anchor_pos = _find_anchor(lines, tags, block.anchor)

        if anchor_pos is None:
            if not synthesize and on_missing_anchor == "raise":
                raise AnchorNotFoundError(block.name, str(block.anchor), path=path)
            insert_at = len(lines)
            new_tags = [(_INSERTED, None)] * len(block.lines)
            result.actions[block.name] = PatchAction.APPENDED
        elif block.side is Side.BEFORE:
            insert_at = anchor_pos
            new_tags = [(_INSERTED, None)] * len(block.lines)
            result.actions[block.name] = PatchAction.INSERTED
        else:
            anchor_index = tags[anchor_pos][0]
            insert_at = anchor_pos + 1
            # Keep caller order for several blocks placed after one anchor
            while insert_at < len(lines) and tags[insert_at][1] == anchor_index:
                insert_at += 1
            new_tags = [(_INSERTED, anchor_index)] * len(block.lines)
            result.actions[block.name] = PatchAction.INSERTED

        lines[insert_at:insert_at] = list(block.lines)
        tags[insert_at:insert_at] = new_tags

    return result


def _find_anchor(
    lines: list[str],
    tags: list[tuple[int, Optional[int]]],
    anchor: LinePattern,
) -> Optional[int]:
    """Position of the first original line matching the anchor."""
    for pos, line in enumerate(lines):
        if tags[pos][0] != _INSERTED and anchor.matches(line):
            return pos
    return None


@dataclass(frozen=True)
class SysctlToggle:
    """A ``key=value`` line that must be active in a sysctl-style file."""
    setting: str

    def __post_init__(self) -> None:
        key, sep, value = self.setting.partition("=")
        if not sep or not key.strip() or self.setting.startswith("#"):
            raise ValueError(f"Invalid sysctl setting: {self.setting!r}")

    @property
    def key(self) -> str:
        return self.setting.partition("=")[0].strip()

    @property
    def value(self) -> str:
        return self.setting.partition("=")[2].strip()

    def is_active(self, line: str) -> bool:
        return line.strip() == self.setting

    def is_commented(self, line: str) -> bool:
        return re.fullmatch(r"#\s*" + re.escape(self.setting) + r"\s*", line.strip()) is not None

    def sets_same_key(self, line: str) -> bool:
        stripped = line.strip()
        if stripped.startswith("#") or "=" not in stripped:
            return False
        return stripped.partition("=")[0].strip() == self.key


def apply_toggles(original: Sequence[str], toggles: Sequence[SysctlToggle]) -> PatchResult:
    """Make every toggle active, leaving no conflicting value behind.

    Per toggle, in order:
    - every active line that sets the same key to another value is
      rewritten to the desired setting (REPLACED), whether or not an
      identical line also exists
    - otherwise an identical active line is left alone (PRESENT)
    - a commented ``#key=value`` line exists: strip the ``#`` and any
      spaces directly after it, nothing else (UNCOMMENTED)
    - otherwise append the setting (APPENDED)
    """
    lines = list(original)
    result = PatchResult(lines=lines)

    for toggle in toggles:
        conflicts = [
            i for i, line in enumerate(lines)
            if toggle.sets_same_key(line) and not toggle.is_active(line)
        ]
        if conflicts:
            for pos in conflicts:
                lines[pos] = toggle.setting
            result.actions[toggle.setting] = PatchAction.REPLACED
            continue

        if any(toggle.is_active(line) for line in lines):
            result.actions[toggle.setting] = PatchAction.PRESENT
            continue

        pos = next((i for i, line in enumerate(lines) if toggle.is_commented(line)), None)
        if pos is not None:
            lines[pos] = re.sub(r"^(\s*)#\s*", r"\1", lines[pos], count=1)
            result.actions[toggle.setting] = PatchAction.UNCOMMENTED
            continue

        lines.append(toggle.setting)
        result.actions[toggle.setting] = PatchAction.APPENDED

    return result


@dataclass
class TargetFile:
    """In-memory copy of a file being patched.

    The file is split on ``\\n`` only. Each line keeps any ``\\r`` it had,
    so CRLF endings and control characters such as form feeds survive a
    round trip unchanged. When every line is CRLF, added lines get a
    ``\\r`` as well.
    """
    path: Path
    lines: list[str]
    exists: bool = True
    trailing_newline: bool = True
    crlf: bool = False

    @classmethod
    def load(cls, path: Path) -> "TargetFile":
        """Read a file; a missing file loads as empty."""
        try:
            with open(path, encoding="utf-8", newline="") as f:
                text = f.read()
        except FileNotFoundError:
            return cls(path=path, lines=[], exists=False)
        except (OSError, UnicodeDecodeError) as e:
            raise FirewallError(
                f"Cannot read {path}",
                details=[str(e)],
                hint="Check file permissions or run with sudo",
            ) from e

        lines = text.split("\n")
        trailing_newline = text.endswith("\n") or not text
        if trailing_newline:
            lines.pop()

        return cls(
            path=path,
            lines=lines,
            exists=True,
            trailing_newline=trailing_newline,
            crlf=bool(lines) and all(line.endswith("\r") for line in lines),
        )

    def render(self, lines: Optional[Sequence[str]] = None) -> str:
        lines = self.lines if lines is None else lines
        if not lines:
            return ""
        if self.crlf:
            lines = [line if line.endswith("\r") else line + "\r" for line in lines]
        text = "\n".join(lines)
        return text + "\n" if self.trailing_newline else text

    def diff(self, lines: Sequence[str]) -> str:
        """Unified diff from the current content to ``lines``."""
        return "".join(difflib.unified_diff(
            [line + "\n" for line in self.lines],
            [line + "\n" for line in lines],
            fromfile=str(self.path),
            tofile=f"{self.path} (patched)",
        ))
