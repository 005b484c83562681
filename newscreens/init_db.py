from .models.database import Base, configure_database, DATABASE_URL
from .models.folderModel import Folder
from .models.screenshotModel import Screenshot
from .models.settingModel import Setting
from .models.usageModel import UsageRecord
from .utils.logging import logger


def init_db(url=DATABASE_URL):
    engine = configure_database(url)
    Base.metadata.create_all(bind=engine)
    return sorted(Base.metadata.tables)


if __name__ == "__main__":
    logger.info("Creating database tables...")
    tables = init_db()
    logger.info(f"Database tables created successfully: {', '.join(tables)}")
