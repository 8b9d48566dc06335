"""Reading and updating Payara's domain.xml."""

import re
from typing import List, Optional, Sequence, Tuple

from dvops.errors import DvOpsError

FQDN_PATTERN = re.compile(r"dataverse\.fqdn=([^<>\"\s]+)")
JAVA_CONFIG_BLOCK = re.compile(r"(<java-config\b[^>]*>)(.*?)(</java-config>)", flags=re.DOTALL)
QUALIFIED_OPTION = re.compile(r"^\[\d*\|\d*\](.+)$")
INDENT_PATTERN = re.compile(r"^([ \t]*)<jvm-options>", flags=re.MULTILINE)


def read_fqdn(content: str) -> Optional[str]:
    match = FQDN_PATTERN.search(content)
    return match.group(1) if match else None


def _tag(option: str) -> str:
    return f"<jvm-options>{option}</jvm-options>"


def unqualified_form(option: str) -> Optional[str]:
    """``[17|]--add-opens=...`` -> ``--add-opens=...``; None for plain options."""
    match = QUALIFIED_OPTION.match(option)
    return match.group(1) if match else None


def _inject_into_block(body: str, options: Sequence[str]) -> Tuple[str, List[str]]:
    trailing = body[len(body.rstrip(" \t")):]
    head = body[: len(body) - len(trailing)]
    indent_match = INDENT_PATTERN.search(body)
    indent = indent_match.group(1) if indent_match else "        "
    changes: List[str] = []

    for option in options:
        tag = _tag(option)
        if tag in head:
            continue

        legacy = unqualified_form(option)
        if legacy and _tag(legacy) in head:
            head = head.replace(_tag(legacy), tag)
            changes.append(f"replaced {legacy} with {option}")
            continue

        if head and not head.endswith("\n"):
            head += "\n"
        head += f"{indent}{tag}\n"
        changes.append(f"added {option}")

    return head + trailing, changes


def inject_jvm_options(content: str, options: Sequence[str]) -> Tuple[str, List[str]]:
    """Adds every missing JVM option to each ``<java-config>`` block.

    Returns the new content and a description of each change. Applying the
    result a second time yields no changes.
    """
    if not JAVA_CONFIG_BLOCK.search(content):
        raise DvOpsError("domain.xml has no <java-config> section to update.")

    changes: List[str] = []

    def replace_block(match) -> str:
        body, block_changes = _inject_into_block(match.group(2), options)
        changes.extend(block_changes)
        return match.group(1) + body + match.group(3)

    return JAVA_CONFIG_BLOCK.sub(replace_block, content), changes
