import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from loguru import logger

from schoolday.db.models import Base
from schoolday.db.session import get_engine


def init_db():
    """Create all database tables."""
    Base.metadata.create_all(bind=get_engine())
    logger.info(f"[DB] Created tables: {', '.join(sorted(Base.metadata.tables))}")


if __name__ == "__main__":
    init_db()
