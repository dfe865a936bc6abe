from sqlalchemy import create_engine, inspect
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker
from config import settings
import logging

logger = logging.getLogger(__name__)

# Create SQLAlchemy engine
engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False} if "sqlite" in settings.DATABASE_URL else {}
)

# Create SessionLocal class. Rows stay readable after commit because services
# hand detached instances back to their callers.
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)

# Create Base class for models
Base = declarative_base()

REQUIRED_COLUMNS = {
    "users": ["id", "pubkey", "name", "disabled_zaps"],
    "invoice": ["id", "user_id", "bolt11", "amount_msats", "preimage", "lnurlp_comment", "state"],
    "zaps": ["id", "request", "event_id"],
}

def get_table_columns(conn, table_name: str) -> list:
    """Get list of column names for a table"""
    try:
        return [col["name"] for col in inspect(conn).get_columns(table_name)]
    except Exception as e:
        logger.debug(f"Error getting columns for {table_name}: {e}")
        return []

def table_exists(conn, table_name: str) -> bool:
    """Check if a table exists"""
    try:
        return table_name in inspect(conn).get_table_names()
    except Exception as e:
        logger.error(f"Error checking if table {table_name} exists: {e}")
        return False

def verify_database_schema(bind=None) -> bool:
    """Verify that the database schema matches the expected structure"""
    try:
        with (bind or engine).connect() as conn:
            for table_name, required_columns in REQUIRED_COLUMNS.items():
                if not table_exists(conn, table_name):
                    logger.error(f"Missing table: {table_name}")
                    return False

                columns = get_table_columns(conn, table_name)
                missing_columns = [col for col in required_columns if col not in columns]
                if missing_columns:
                    logger.error(f"Missing columns in {table_name} table: {missing_columns}")
                    return False

                logger.info(f"{table_name} table schema verified successfully")

            return True

    except Exception as e:
        logger.error(f"Database schema verification failed: {e}")
        return False

def create_tables(bind=None):
    """Create all tables and verify the resulting schema"""
    # Register models on Base.metadata
    from lnaddress import models  # noqa: F401

    try:
        logger.info("Creating database tables...")
        Base.metadata.create_all(bind=bind or engine)
        logger.info("SQLAlchemy tables created successfully")

        if verify_database_schema(bind):
            logger.info("Database initialization completed successfully")
        else:
            raise Exception("Database schema verification failed")

    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise
