from __future__ import annotations

import logging
import subprocess
import sys
from pathlib import Path

from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import inspect
from sqlalchemy.engine import Engine

from coupons_api.core import config

logger = logging.getLogger(__name__)
MIGRATIONS_PREFIX = "[MIGRATIONS]"

COUPONS_TABLE = "coupons"
COUPON_CODE_INDEX = "ix_coupons_code"
REQUIRED_COUPON_COLUMNS = frozenset(
    {
        "id",
        "code",
        "discount_type",
        "discount_value",
        "min_purchase",
        "usage_limit",
        "used_count",
        "is_active",
        "expiry_date",
    }
)


def validate_database_environment() -> None:
    if config.IS_PROD and config.DATABASE_URL.startswith("sqlite"):
        logger.critical("%s SQLite is forbidden in production", MIGRATIONS_PREFIX)
        raise RuntimeError("SQLite is forbidden in production environment")


def apply_migrations(*, alembic_config_path: Path) -> None:
    """Apply pending Alembic migrations before the head check runs.

    ``AUTO_APPLY_MIGRATIONS`` forces the behaviour either way; when unset,
    only production applies automatically.
    """
    auto_apply_raw = config.AUTO_APPLY_MIGRATIONS

    if auto_apply_raw in {"0", "false", "no", "off"}:
        logger.info("%s auto migration disabled by AUTO_APPLY_MIGRATIONS", MIGRATIONS_PREFIX)
        return

    should_auto_apply = auto_apply_raw in {"1", "true", "yes", "on"}
    if auto_apply_raw == "":
        should_auto_apply = config.IS_PROD

    if not should_auto_apply:
        logger.info("%s auto migration skipped env=%s", MIGRATIONS_PREFIX, config.ENV_NORMALIZED)
        return

    if not alembic_config_path.exists():
        logger.critical("%s alembic config not found path=%s", MIGRATIONS_PREFIX, alembic_config_path)
        raise RuntimeError("alembic config not found")

    logger.info("%s applying migrations to head", MIGRATIONS_PREFIX)
    try:
        subprocess.run(
            [
                sys.executable,
                "-m",
                "alembic",
                "-c",
                str(alembic_config_path),
                "upgrade",
                "head",
            ],
            check=True,
            capture_output=True,
            text=True,
        )
    except subprocess.CalledProcessError as exc:
        logger.critical(
            "%s migration apply failed returncode=%s stdout=%s stderr=%s",
            MIGRATIONS_PREFIX,
            exc.returncode,
            (exc.stdout or "").strip(),
            (exc.stderr or "").strip(),
        )
        raise RuntimeError("Automatic migration failed") from exc

    logger.info("%s migrations applied", MIGRATIONS_PREFIX)


def ensure_migrations_applied(*, engine: Engine, alembic_config_path: Path) -> None:
    if config.IS_TEST:
        logger.info("%s skipped migration check in test environment", MIGRATIONS_PREFIX)
        return

    if not alembic_config_path.exists():
        logger.critical("%s alembic config not found path=%s", MIGRATIONS_PREFIX, alembic_config_path)
        raise RuntimeError("alembic config not found")

    alembic_cfg = Config(str(alembic_config_path))
    script_directory = ScriptDirectory.from_config(alembic_cfg)
    expected_heads = set(script_directory.get_heads())

    with engine.connect() as connection:
        inspector = inspect(connection)
        if "alembic_version" not in inspector.get_table_names():
            logger.critical("%s alembic_version table missing", MIGRATIONS_PREFIX)
            raise RuntimeError("Database has no migration state")

        current_rows = connection.exec_driver_sql("SELECT version_num FROM alembic_version").fetchall()

    current_heads = {row[0] for row in current_rows if row and row[0]}
    if current_heads != expected_heads:
        logger.critical(
            "%s pending migration detected current=%s expected=%s",
            MIGRATIONS_PREFIX,
            sorted(current_heads),
            sorted(expected_heads),
        )
        raise RuntimeError("Pending migrations detected")

    verify_coupon_schema(engine)
    logger.info("%s migration state verified", MIGRATIONS_PREFIX)


def verify_coupon_schema(engine: Engine) -> None:
    """Fail fast when the stamped head does not match the coupons table on disk.

    Lookups and redemption both rely on ``coupons.code`` being unique, so the
    unique index is checked alongside the table and its columns.
    """
    with engine.connect() as connection:
        inspector = inspect(connection)
        if not inspector.has_table(COUPONS_TABLE):
            logger.critical("%s %s table missing", MIGRATIONS_PREFIX, COUPONS_TABLE)
            raise RuntimeError("Coupons table is missing")

        columns = {column["name"] for column in inspector.get_columns(COUPONS_TABLE)}
        missing_columns = sorted(REQUIRED_COUPON_COLUMNS - columns)
        if missing_columns:
            logger.critical("%s coupons columns missing=%s", MIGRATIONS_PREFIX, missing_columns)
            raise RuntimeError(f"Coupons table is missing columns: {', '.join(missing_columns)}")

        code_index = next(
            (index for index in inspector.get_indexes(COUPONS_TABLE) if index["name"] == COUPON_CODE_INDEX),
            None,
        )

    if code_index is None or not code_index.get("unique"):
        logger.critical("%s unique index %s missing", MIGRATIONS_PREFIX, COUPON_CODE_INDEX)
        raise RuntimeError(f"Unique index {COUPON_CODE_INDEX} is missing")
