import os

from dotenv import load_dotenv

load_dotenv()


class Config:
    """Flask configuration for the storage engine, populated from the environment."""

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    db_uri = os.environ.get("DATABASE_URI", "sqlite:///storage.db")
    SQLALCHEMY_DATABASE_URI = db_uri

    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_recycle": 1800,
        "pool_pre_ping": True,
    }

    if not db_uri.startswith("sqlite"):
        SQLALCHEMY_ENGINE_OPTIONS.update({
            "pool_size": 10,
            "max_overflow": 20,
        })
        if db_uri.startswith("mysql"):
            SQLALCHEMY_ENGINE_OPTIONS["connect_args"] = {"connect_timeout": 10}

    # Create the registry table on start-up instead of through migrations.
    STORAGE_CREATE_TABLES = os.environ.get("STORAGE_CREATE_TABLES", "").lower() in {"1", "true", "yes", "on"}


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SQLALCHEMY_ENGINE_OPTIONS: dict = {}
    STORAGE_CREATE_TABLES = True
