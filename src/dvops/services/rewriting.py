"""Structured rewriting of production names and paths in copied artifacts.

Rewrites are applied to the value part of a record (a property value, a
crontab command, a dump line) and only where the production host name or
path stands on its own. ``prod.example.org`` is rewritten inside
``https://prod.example.org/x`` but not inside ``www.prod.example.org`` or
``prod.example.org.backup.net``; ``/data/dv`` is rewritten inside
``/data/dv/files`` but not inside ``/data/dvx`` or ``/mnt/data/dv``.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Pattern, Tuple

_HOST_CHARS = r"A-Za-z0-9\-"
_PATH_CHARS = r"A-Za-z0-9._~\-"
_ENV_ASSIGNMENT = re.compile(r"^(\s*[A-Za-z_][A-Za-z0-9_]*\s*=\s*)(.*)$")
_CRON_SPECIAL = re.compile(r"^(\s*@[A-Za-z]+\s+)(.*)$")
_CRON_SCHEDULE = re.compile(r"^(\s*(?:\S+\s+){5})(.*)$")
_PROPERTY = re.compile(r"^(\s*[^=:\s]+(?:\\ [^=:\s]*)*\s*[=:]\s*)(.*)$")


def host_pattern(host: str) -> Pattern:
    return re.compile(
        rf"(?<![{_HOST_CHARS}.]){re.escape(host)}(?![{_HOST_CHARS}]|\.[{_HOST_CHARS}])",
        flags=re.IGNORECASE,
    )


def path_pattern(path: str) -> Pattern:
    clean = path.rstrip("/") or "/"
    return re.compile(rf"(?<![{_PATH_CHARS}/]){re.escape(clean)}(?![{_PATH_CHARS}])")


@dataclass
class Rewriter:
    """Maps production host names and paths onto their local counterparts."""

    hosts: Dict[str, str] = field(default_factory=dict)
    paths: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        self._rules: List[Tuple[Pattern, str]] = []
        # Longest first so nested paths win over their parents.
        for old, new in sorted(self.paths.items(), key=lambda item: -len(item[0])):
            if old and old != new:
                self._rules.append((path_pattern(old), new.rstrip("/") or "/"))
        for old, new in self.hosts.items():
            if old and old != new:
                self._rules.append((host_pattern(old), new))

    def apply(self, value: str) -> str:
        for pattern, replacement in self._rules:
            value = pattern.sub(lambda _match, repl=replacement: repl, value)
        return value


def _rewrite_lines(lines: Iterable[str], rewrite_line) -> Tuple[List[str], int]:
    output: List[str] = []
    changed = 0
    for line in lines:
        new_line = rewrite_line(line)
        if new_line != line:
            changed += 1
        output.append(new_line)
    return output, changed


def _split_rewrite(pattern: Pattern, line: str, rewriter: Rewriter):
    match = pattern.match(line)
    if not match:
        return None
    return match.group(1) + rewriter.apply(match.group(2)) + line[match.end():]


def rewrite_properties(text: str, rewriter: Rewriter) -> Tuple[str, int]:
    """Rewrites property values; keys and comments are left untouched."""

    def rewrite_line(line: str) -> str:
        stripped = line.strip()
        if not stripped or stripped[0] in "#!":
            return line
        rewritten = _split_rewrite(_PROPERTY, line, rewriter)
        return line if rewritten is None else rewritten

    lines, changed = _rewrite_lines(text.splitlines(keepends=True), rewrite_line)
    return "".join(lines), changed


def rewrite_crontab(text: str, rewriter: Rewriter) -> Tuple[str, int]:
    """Rewrites crontab commands and environment values, never schedules."""

    def rewrite_line(line: str) -> str:
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            return line
        for pattern in (_ENV_ASSIGNMENT, _CRON_SPECIAL, _CRON_SCHEDULE):
            rewritten = _split_rewrite(pattern, line, rewriter)
            if rewritten is not None:
                return rewritten
        return line

    lines, changed = _rewrite_lines(text.splitlines(keepends=True), rewrite_line)
    return "".join(lines), changed


def rewrite_script(text: str, rewriter: Rewriter) -> Tuple[str, int]:
    lines, changed = _rewrite_lines(text.splitlines(keepends=True), rewriter.apply)
    return "".join(lines), changed


def rewrite_file(source_path: str, dest_path: str, rewriter: Rewriter) -> int:
    """Streams a large text file (a SQL dump) line by line through the rewriter."""
    changed = 0
    with open(source_path, "r", encoding="utf-8", errors="surrogateescape") as src, open(
        dest_path, "w", encoding="utf-8", errors="surrogateescape", newline=""
    ) as dst:
        for line in src:
            new_line = rewriter.apply(line)
            if new_line != line:
                changed += 1
            dst.write(new_line)
    return changed
