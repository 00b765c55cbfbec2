"""
Startup diagnostics — runs once when the Flask app starts.

Checks the database and the tables the redemption flow depends on, then
logs a summary banner.  Missing structure is reported with the same
remediation text SchemaError carries at request time.
"""

import logging
import sys

from flask import Flask
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import SQLAlchemyError

from mealpass.core.exceptions import SchemaError
from mealpass.models import db

logger = logging.getLogger(__name__)

REQUIRED_TABLES = (
    "companies",
    "shifts",
    "meal_types",
    "voucher_holders",
    "meal_records",
    "extra_meal_requests",
    "managers",
)


def missing_tables(engine) -> list[str]:
    """Return the required tables absent from ``engine``'s database."""
    present = set(sa_inspect(engine).get_table_names())
    return [name for name in REQUIRED_TABLES if name not in present]


def run_startup_diagnostics(app: Flask):
    """Run diagnostic checks during app startup (inside app context)."""
    if app.config.get("TESTING"):
        return  # skip during tests for speed

    issues: list[str] = []

    with app.app_context():
        py = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"

        db_status = "ok"
        db_uri = str(app.config.get("SQLALCHEMY_DATABASE_URI", ""))
        db_type = "PostgreSQL" if "postgresql" in db_uri else "SQLite" if "sqlite" in db_uri else "unknown"
        absent: list[str] = []
        try:
            db.session.execute(db.text("SELECT 1"))
            absent = missing_tables(db.engine)
        except SQLAlchemyError as exc:
            db_status = "FAILED"
            issues.append(f"Database unreachable: {exc}")
            db.session.rollback()

        if absent:
            issues.append(f"Missing tables: {', '.join(absent)}. {SchemaError.DEFAULT_REMEDIATION}")

        tz = app.config.get("LOCAL_TIMEZONE") or "host local time"

        banner = f"""
╔══════════════════════════════════════════════════════════════╗
║  MealPass — Startup Diagnostics                              ║
╠══════════════════════════════════════════════════════════════╣
║  Python      : {py:<46s}║
║  Debug       : {str(app.debug):<46s}║
║  Database    : {f'{db_type} ({db_status})':<46s}║
║  Timezone    : {tz:<46s}║
║  Daily limit : {str(app.config.get('DAILY_MEAL_LIMIT')):<46s}║
║  Retries     : {str(app.config.get('RETRY_MAX_RETRIES')):<46s}║
╚══════════════════════════════════════════════════════════════╝"""
        logger.info(banner)

        if issues:
            logger.warning("Startup issues detected:")
            for issue in issues:
                logger.warning("  ⚠ %s", issue)
        else:
            logger.info("✅ All startup checks passed")
