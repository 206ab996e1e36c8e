"""
Command-line payload parsing.

Turns CLI arguments into the values the coordinator expects:
- payload text, where "@path" reads the file
- JSON objects for handoff interfaces and changes
- --evidence TOOL=pass:note entries
- --item / --feedback review feedback
"""

import json
from pathlib import Path

import yaml


class PayloadError(ValueError):
    """A CLI argument couldn't be turned into a payload."""
    pass


def read_payload(value: str) -> str:
    """Return value, or the contents of the file it names when it starts with '@'."""
    if not value.startswith("@"):
        return value
    path = Path(value[1:])
    if not path.is_file():
        raise PayloadError(f"Payload file not found: {path}")
    return path.read_text()


def parse_json_object(value: str, what: str = "value") -> dict:
    """Parse a JSON object argument (or '@file' holding one)."""
    text = read_payload(value)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise PayloadError(f"Invalid JSON for {what}: {e}") from None
    if not isinstance(data, dict):
        raise PayloadError(f"{what} must be a JSON object")
    return data


def parse_evidence(entries: list[str] | None) -> list[dict]:
    """Parse TOOL=pass[:note] / TOOL=fail[:note] entries."""
    evidence = []
    for entry in entries or []:
        tool, sep, rest = entry.partition("=")
        result, _, note = rest.partition(":")
        result = result.strip().lower()
        if not sep or not tool.strip() or result not in ("pass", "fail"):
            raise PayloadError(f"Invalid evidence '{entry}' (expected TOOL=pass:note or TOOL=fail:note)")
        evidence.append({"tool": tool.strip(), "passed": result == "pass", "output": note.strip()})
    return evidence


def parse_feedback(items: list[list[str]] | None, feedback_file: str | None) -> list[dict]:
    """Collect feedback from --item SEV LOC PROBLEM FIX and a --feedback file.

    The file may be JSON or YAML: either a list of items or a mapping with
    an "items" list.
    """
    feedback = [
        {"severity": sev, "location": loc, "problem": problem, "required_fix": fix}
        for sev, loc, problem, fix in (items or [])
    ]

    if feedback_file:
        path = Path(feedback_file)
        if not path.is_file():
            raise PayloadError(f"Feedback file not found: {path}")
        try:
            data = yaml.safe_load(path.read_text())
        except yaml.YAMLError as e:
            raise PayloadError(f"Failed to parse {path}: {e}") from None
        if isinstance(data, dict):
            data = data.get("items")
        if not isinstance(data, list):
            raise PayloadError(f"{path}: expected a list of feedback items")
        feedback.extend(data)

    return feedback


def parse_handoff_ref(value: str) -> tuple[str, int]:
    """Parse SRC:N (e.g. spec:2) into (source_role, handoff sequence)."""
    role, sep, seq = value.partition(":")
    try:
        sequence = int(seq)
    except ValueError:
        sequence = 0
    if not sep or not role or sequence < 1:
        raise PayloadError(f"Invalid handoff reference '{value}' (expected ROLE:N, e.g. spec:1)")
    return role, sequence
