"""Multi-tenant migration helpers.

Runs Alembic migrations for one tenant schema or for every tenant the
deployment knows about. Tenant schemas are named ``tenant_<alias>``,
matching the schema names the host platform's TenantsAPI hands out.
"""

from __future__ import annotations

from argparse import Namespace
from collections.abc import Iterable

import structlog
from alembic import command
from alembic.config import Config

from src.bbb_meetings.config import get_settings

logger = structlog.get_logger(__name__)


def _get_alembic_config() -> Config:
    """Create an Alembic Config pointing to our alembic.ini."""
    return Config("alembic.ini")


def schema_for_alias(alias: str) -> str:
    return f"tenant_{alias}"


def migrate_tenant(schema_name: str, direction: str = "upgrade", revision: str = "head") -> None:
    """Run migration for a single tenant schema.

    Args:
        schema_name: The tenant schema name (e.g., "tenant_oae")
        direction: "upgrade" or "downgrade"
        revision: Target revision (default: "head")
    """
    config = _get_alembic_config()
    # context.get_x_argument() reads the schema from cmd_opts.x
    config.cmd_opts = Namespace(x=[f"schema={schema_name}"])

    if direction == "upgrade":
        command.upgrade(config, revision)
    elif direction == "downgrade":
        command.downgrade(config, revision)
    else:
        raise ValueError(f"Invalid direction: {direction}")
    logger.info("migrations.tenant_migrated", schema=schema_name, direction=direction, revision=revision)


def migrate_all_tenants(
    aliases: Iterable[str] | None = None,
    direction: str = "upgrade",
    revision: str = "head",
) -> list[str]:
    """Run migrations for every tenant schema.

    Args:
        aliases: Tenant aliases to migrate. Defaults to the tenants that
            have a BBB configuration override in the settings.

    Returns:
        List of schema names that were migrated.
    """
    if aliases is None:
        aliases = sorted(get_settings().tenant_overrides())

    migrated = []
    for alias in aliases:
        schema_name = schema_for_alias(alias)
        migrate_tenant(schema_name, direction, revision)
        migrated.append(schema_name)
    return migrated
