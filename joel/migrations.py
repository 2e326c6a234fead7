"""Versioned upgrades of stored user rows."""

import logging
from typing import Any, Callable, Dict, Tuple

logger = logging.getLogger(__name__)

USER_SCHEMA_VERSION = 4


class UnknownSchemaVersionError(ValueError):
    """Raised when a user row carries a schema version this code cannot read."""


def _upgrade_to_v2(row: Dict[str, Any]) -> None:
    # Legacy rows predate multi-platform support
    row["message_app"] = row.get("message_app") or "Telegram"
    row["status"] = row.get("status") or "active"
    row["language_code"] = row.get("language_code") or "fr"


def _upgrade_to_v3(row: Dict[str, Any]) -> None:
    if row.get("chat_id") is not None:
        row["chat_id"] = str(row["chat_id"])


def _upgrade_to_v4(row: Dict[str, Any]) -> None:
    if row.get("last_engagement_at") is None:
        row["last_engagement_at"] = row.get("last_message_received_at")
    row["waiting_reengagement"] = bool(row.get("waiting_reengagement") or False)


UPGRADES: Dict[int, Callable[[Dict[str, Any]], None]] = {
    2: _upgrade_to_v2,
    3: _upgrade_to_v3,
    4: _upgrade_to_v4,
}


def migrate_user_row(row: Dict[str, Any]) -> Tuple[Dict[str, Any], bool]:
    """Bring a user row up to USER_SCHEMA_VERSION.

    Returns the upgraded copy and whether anything changed. Rows without a
    version are treated as version 1. Running it on a current row is a no-op.

    Raises:
        UnknownSchemaVersionError: If the stored version is not an integer
            between 1 and USER_SCHEMA_VERSION.
    """
    upgraded = dict(row)
    version = upgraded.get("schema_version")
    if version is None:
        version = 1

    if isinstance(version, bool) or not isinstance(version, int):
        raise UnknownSchemaVersionError(f"Invalid user schema version: {version!r}")
    if version < 1 or version > USER_SCHEMA_VERSION:
        raise UnknownSchemaVersionError(f"Unknown user schema version: {version}")

    if version == USER_SCHEMA_VERSION:
        return upgraded, False

    for target in range(version + 1, USER_SCHEMA_VERSION + 1):
        UPGRADES[target](upgraded)
        upgraded["schema_version"] = target

    logger.info(
        f"Migrated user {upgraded.get('id')} from schema v{version} "
        f"to v{USER_SCHEMA_VERSION}"
    )
    return upgraded, True
