import os
from functools import partial
from dotenv import load_dotenv
from flask import Flask
from .routes import routes_bp
from .models.database import Base, configure_database
from .services.imageAnalysis import VisionAnalyzer
from .services.storage import create_image_store
from .services.worker import start_worker, enqueue_publish_job
from .utils.logging import logger


def _env_bool(name, default):
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def create_app(config=None, image_store=None, analyzer=None):
    load_dotenv()
    app = Flask(__name__)

    # --- Configuration ---
    app.config["DATABASE_URL"] = os.getenv("DATABASE_URL", "sqlite:///./newscreens.db")
    app.config["STORAGE_BACKEND"] = os.getenv("STORAGE_BACKEND", "local")
    app.config["SCREENSHOTS_DIR"] = os.getenv(
        "SCREENSHOTS_DIR", os.path.join(os.path.dirname(__file__), "statics", "screenshots")
    )
    app.config["S3_BUCKET"] = os.getenv("S3_BUCKET")
    app.config["S3_ENDPOINT"] = os.getenv("S3_ENDPOINT")
    app.config["S3_ACCESS_KEY_ID"] = os.getenv("S3_ACCESS_KEY_ID")
    app.config["S3_SECRET_ACCESS_KEY"] = os.getenv("S3_SECRET_ACCESS_KEY")
    app.config["S3_REGION"] = os.getenv("S3_REGION", "auto")
    app.config["GEMINI_API_KEY"] = os.getenv("GEMINI_API_KEY")
    app.config["MAX_CONTENT_LENGTH"] = int(os.getenv("MAX_CONTENT_LENGTH", 10 * 1024 * 1024))  # 10 MB
    app.config["START_WORKER"] = _env_bool("START_WORKER", True)
    if config:
        app.config.update(config)

    # --- Database setup ---
    engine = configure_database(app.config["DATABASE_URL"])
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables initialized")

    # --- Services ---
    app.extensions["image_store"] = image_store or create_image_store(app.config)
    app.extensions["vision_analyzer"] = analyzer or VisionAnalyzer(api_key=app.config["GEMINI_API_KEY"])
    app.extensions["publish_dispatch"] = None

    app.register_blueprint(routes_bp)

    # --- Start background publish worker ---
    if app.config["START_WORKER"]:
        start_worker(app)
        app.extensions["publish_dispatch"] = partial(enqueue_publish_job, store=app.extensions["image_store"])

    logger.info("Flask app created successfully")
    return app
