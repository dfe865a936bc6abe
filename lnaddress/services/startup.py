import logging
import os
from datetime import datetime
from typing import Any, Dict

from sqlalchemy import text

from config import settings
from lnaddress.database import create_tables, engine, get_table_columns, table_exists, verify_database_schema
from lnaddress.models import InvoiceState
from lnaddress.services.nostr_keys import nostr_signer, pubkey_to_npub

logger = logging.getLogger(__name__)


class StartupManager:
    """Manages application startup tasks and health checks"""

    def __init__(self):
        self.startup_time = None
        self.startup_checks = {
            "database": False,
            "schema": False,
            "config": False,
            "signer": False
        }
        self.startup_errors = []

    async def run_startup_checks(self) -> Dict[str, Any]:
        """Run all startup checks and return status"""
        self.startup_time = datetime.utcnow()
        logger.info("=== Lightning Address Startup Checks ===")

        # Check 1: Database Creation
        try:
            logger.info("1. Checking database...")
            create_tables()
            self.startup_checks["database"] = True
            logger.info("✓ Database initialized successfully")
        except Exception as e:
            error_msg = f"Database initialization failed: {str(e)}"
            logger.error(f"✗ {error_msg}")
            self.startup_errors.append(error_msg)

        # Check 2: Schema Verification
        try:
            logger.info("2. Verifying database schema...")
            if verify_database_schema():
                self.startup_checks["schema"] = True
                logger.info("✓ Database schema verified successfully")
            else:
                raise Exception("Schema verification failed")
        except Exception as e:
            error_msg = f"Database schema verification failed: {str(e)}"
            logger.error(f"✗ {error_msg}")
            self.startup_errors.append(error_msg)

        # Check 3: Configuration Validation
        try:
            logger.info("3. Validating configuration...")
            self._validate_configuration()
            self.startup_checks["config"] = True
            logger.info("✓ Configuration validated successfully")
        except Exception as e:
            error_msg = f"Configuration validation failed: {str(e)}"
            logger.error(f"✗ {error_msg}")
            self.startup_errors.append(error_msg)

        # Check 4: Zap receipt signer
        if nostr_signer.is_enabled():
            logger.info(f"4. ✓ Zap receipts signed as {pubkey_to_npub(nostr_signer.public_key_hex)}")
        else:
            logger.warning("4. ⚠ No Nostr key loaded, zap requests will not be advertised")
        # Don't fail startup without a signer; plain LNURL-pay still works
        self.startup_checks["signer"] = True

        # Log final status
        total_checks = len(self.startup_checks)
        passed_checks = sum(self.startup_checks.values())

        if passed_checks == total_checks and not self.startup_errors:
            logger.info(f"=== Startup Complete: {passed_checks}/{total_checks} checks passed ===")
        else:
            logger.warning(f"=== Startup Complete: {passed_checks}/{total_checks} checks passed, {len(self.startup_errors)} errors ===")
            for error in self.startup_errors:
                logger.error(f"  • {error}")

        return self.get_startup_status()

    def _validate_configuration(self):
        """Validate critical configuration settings"""
        errors = []

        if not settings.DATABASE_URL:
            errors.append("DATABASE_URL not configured")

        if not settings.ADMIN_API_KEY:
            errors.append("ADMIN_API_KEY not configured")

        if not settings.LND_REST_URL:
            errors.append("LND_REST_URL not configured")

        if settings.MIN_SENDABLE > settings.MAX_SENDABLE:
            errors.append("MIN_SENDABLE must not exceed MAX_SENDABLE")

        if settings.NOSTR_PRIVATE_KEY and not settings.NOSTR_RELAYS:
            errors.append("NOSTR_RELAYS required when NOSTR_PRIVATE_KEY is set")

        if settings.RECEIPT_PUBLISH_MAX_ATTEMPTS < 1:
            errors.append("RECEIPT_PUBLISH_MAX_ATTEMPTS must be at least 1")

        # Check if database file directory exists (for SQLite)
        if "sqlite" in settings.DATABASE_URL and ":memory:" not in settings.DATABASE_URL:
            db_path = settings.DATABASE_URL.replace("sqlite:///", "")
            db_dir = os.path.dirname(os.path.abspath(db_path))
            if not os.path.exists(db_dir):
                errors.append(f"Database directory does not exist: {db_dir}")
            elif not os.access(db_dir, os.W_OK):
                errors.append(f"Database directory is not writable: {db_dir}")

        if errors:
            raise Exception("; ".join(errors))

    def get_startup_status(self) -> Dict[str, Any]:
        """Get current startup status"""
        return {
            "startup_time": self.startup_time.isoformat() if self.startup_time else None,
            "uptime_seconds": (datetime.utcnow() - self.startup_time).total_seconds() if self.startup_time else 0,
            "checks": self.startup_checks,
            "checks_passed": sum(self.startup_checks.values()),
            "total_checks": len(self.startup_checks),
            "errors": self.startup_errors,
            "status": "healthy" if all(self.startup_checks.values()) and not self.startup_errors else "degraded"
        }

    def get_database_info(self, bind=None) -> Dict[str, Any]:
        """Get detailed database information"""
        try:
            with (bind or engine).connect() as conn:
                db_info = {
                    "url": settings.DATABASE_URL.split("://")[0] + "://***",  # Hide credentials
                    "tables": {}
                }

                if table_exists(conn, "users"):
                    db_info["tables"]["users"] = {
                        "exists": True,
                        "columns": len(get_table_columns(conn, "users")),
                        "total_users": conn.execute(text("SELECT COUNT(*) FROM users")).scalar(),
                        "zaps_disabled": conn.execute(text("SELECT COUNT(*) FROM users WHERE disabled_zaps")).scalar()
                    }
                else:
                    db_info["tables"]["users"] = {"exists": False}

                if table_exists(conn, "invoice"):
                    rows = conn.execute(text("SELECT state, COUNT(*) FROM invoice GROUP BY state")).all()
                    by_state = {state.name.lower(): 0 for state in InvoiceState}
                    for state, count in rows:
                        by_state[InvoiceState(state).name.lower()] = count

                    db_info["tables"]["invoice"] = {
                        "exists": True,
                        "columns": len(get_table_columns(conn, "invoice")),
                        "total_invoices": sum(by_state.values()),
                        "by_state": by_state
                    }
                else:
                    db_info["tables"]["invoice"] = {"exists": False}

                if table_exists(conn, "zaps"):
                    db_info["tables"]["zaps"] = {
                        "exists": True,
                        "columns": len(get_table_columns(conn, "zaps")),
                        "total_zaps": conn.execute(text("SELECT COUNT(*) FROM zaps")).scalar(),
                        "receipts_recorded": conn.execute(
                            text("SELECT COUNT(*) FROM zaps WHERE event_id IS NOT NULL")
                        ).scalar()
                    }
                else:
                    db_info["tables"]["zaps"] = {"exists": False}

                return db_info

        except Exception as e:
            logger.error(f"Failed to get database info: {e}")
            return {"error": str(e)}


# Global startup manager instance
startup_manager = StartupManager()
