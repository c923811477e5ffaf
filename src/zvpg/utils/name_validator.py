"""Name validation utilities for zvpg entities.

Snapshot names end up after the ``@`` of a ZFS snapshot path and are kept to a
strict ASCII alphabet. Branch names become dataset paths below the branches
container, so they follow a git ref-name style grammar that allows ``/`` for
namespacing (``feature/login``) but rejects anything that could escape it.
"""

import re
from typing import Optional, Pattern, Union

from zvpg.core.errors import ZvpgError


# Snapshot names: letters, numbers, dash and underscore only
VALID_SNAPSHOT_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")

# Branch names: unicode word characters, dash, dot and slash, with the git
# ref-name exclusions (no leading "/" or ".", no "..", "//", no ".lock" suffix)
DEFAULT_BRANCH_NAME_PATTERN = (
    r"^(?![/.])(?!.*(?:\.\.|//|/\.))(?!.*\.lock$)(?!.*/$)[\w\-./]+$"
)

MAX_SNAPSHOT_NAME_LENGTH = 63
MAX_BRANCH_NAME_LENGTH = 200


class InvalidNameError(ValueError, ZvpgError):
    """Raised when a name doesn't meet validation requirements."""

    pass


def _check_common(name: str, entity_type: str, max_length: int) -> None:
    if not name:
        raise InvalidNameError(f"{entity_type.capitalize()} name cannot be empty")

    if len(name) > max_length:
        raise InvalidNameError(
            f"{entity_type.capitalize()} name cannot exceed {max_length} characters"
        )

    # Null bytes and other control characters
    if any(ord(c) < 32 or ord(c) == 127 for c in name):
        raise InvalidNameError(
            f"{entity_type.capitalize()} name contains invalid control characters"
        )

    if "@" in name or "\\" in name or " " in name:
        raise InvalidNameError(
            f"Invalid {entity_type} name '{name}'. "
            f"Names cannot contain '@', '\\' or spaces."
        )


def validate_snapshot_name(name: str) -> None:
    """Validate a bare snapshot name.

    Valid names contain only letters, numbers, dash (-) and underscore (_).

    Raises:
        InvalidNameError: If the name is invalid
    """
    _check_common(name, "snapshot", MAX_SNAPSHOT_NAME_LENGTH)

    if not VALID_SNAPSHOT_NAME_PATTERN.match(name):
        raise InvalidNameError(
            f"Invalid snapshot name '{name}'. "
            f"Names must contain only letters, numbers, dash (-), and underscore (_)."
        )


def validate_branch_name(
    name: str, pattern: Optional[Union[str, Pattern[str]]] = None
) -> None:
    """Validate a branch name against the configured naming pattern.

    Args:
        name: The branch name to validate
        pattern: Regular expression the name must match. Defaults to the
            git ref-name style grammar.

    Raises:
        InvalidNameError: If the name is invalid
    """
    _check_common(name, "branch", MAX_BRANCH_NAME_LENGTH)

    compiled = re.compile(pattern or DEFAULT_BRANCH_NAME_PATTERN, re.UNICODE)
    if not compiled.search(name):
        raise InvalidNameError(
            f"Invalid branch name '{name}'. "
            f"Branch names must match the pattern {compiled.pattern!r}."
        )

    # Path traversal must be impossible whatever the configured pattern says
    segments = name.split("/")
    if name.startswith("/") or any(seg in ("", ".", "..") for seg in segments):
        raise InvalidNameError(
            f"Security violation: branch name '{name}' contains "
            f"forbidden path segments"
        )
