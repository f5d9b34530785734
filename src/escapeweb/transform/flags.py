"""Translation of submitted form fields into transformer flags.

Each recognized option is a boolean form field. When the field is
truthy, the matching ``--<name>`` token is appended to the argument list
handed to the transformer. Flags are emitted in the fixed order of
``RECOGNIZED_FLAGS`` regardless of the order they were submitted in.
"""

from __future__ import annotations

from typing import Any, Mapping

RECOGNIZED_FLAGS: tuple[str, ...] = ("no-dates", "no-sci", "no-zeros", "paranoid")

# Form values that a browser or script may send to mean "off"
FALSY_STRINGS = frozenset({"", "0", "false", "off", "no"})


def is_enabled(value: Any) -> bool:
    """Return True if a submitted form value switches its option on."""
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip().lower() not in FALSY_STRINGS
    return bool(value)


def enable_flags(args: list[str], body: Mapping[str, Any]) -> list[str]:
    """Append ``--<flag>`` to ``args`` for every enabled recognized flag.

    Unrecognized keys in ``body`` are ignored. The list is modified in
    place and returned for convenience.
    """
    for flag in RECOGNIZED_FLAGS:
        if is_enabled(body.get(flag)):
            args.append(f"--{flag}")
    return args


def build_command(script: str, body: Mapping[str, Any]) -> list[str]:
    """Build the transformer argument list: the script followed by its flags."""
    return enable_flags([script], body)
