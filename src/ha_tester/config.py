from functools import lru_cache
from typing import Union

from pydantic import validator
from pydantic_settings import BaseSettings

READ_PREFERENCES = {"primary", "primaryPreferred", "secondary", "secondaryPreferred", "nearest"}
READ_CONCERN_LEVELS = {"local", "available", "majority", "linearizable", "snapshot"}


class Settings(BaseSettings):
    # store endpoint / credentials
    MONGODB_URI: str = (
        "mongodb://localhost:27017,localhost:27018,localhost:27019/"
        "mongodb-ha-test?replicaSet=rs0"
    )
    DATABASE_NAME: str = "mongodb-ha-test"

    # driver options
    MAX_POOL_SIZE: int = 10
    SERVER_SELECTION_TIMEOUT_MS: int = 10000
    SOCKET_TIMEOUT_MS: int = 45000
    READ_PREFERENCE: str = "primaryPreferred"
    READ_CONCERN_LEVEL: str = "majority"
    WRITE_CONCERN_W: str = "majority"
    WRITE_CONCERN_J: bool = True
    WRITE_CONCERN_WTIMEOUT: int = 5000

    # test cadence (ms)
    WRITE_INTERVAL: int = 1000
    MONITOR_INTERVAL: int = 5000
    VERIFY_INTERVAL: int = 10000
    BATCH_SIZE: int = 10
    BATCH_WRITE_DELAY: int = 100
    MAX_RETRIES: int = 3
    RETRY_DELAY: int = 1000
    STARTUP_SETTLE_MONITOR_MS: int = 2000
    STARTUP_SETTLE_WRITER_MS: int = 5000

    MAX_REPLICATION_LAG_S: float = 10.0
    SEQUENCE_NAME: str = "test_sequence"
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False

    @validator(
        "MAX_POOL_SIZE",
        "SERVER_SELECTION_TIMEOUT_MS",
        "SOCKET_TIMEOUT_MS",
        "WRITE_INTERVAL",
        "MONITOR_INTERVAL",
        "VERIFY_INTERVAL",
        "BATCH_SIZE",
    )
    def _positive(cls, v):
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    @validator(
        "WRITE_CONCERN_WTIMEOUT",
        "BATCH_WRITE_DELAY",
        "MAX_RETRIES",
        "RETRY_DELAY",
        "STARTUP_SETTLE_MONITOR_MS",
        "STARTUP_SETTLE_WRITER_MS",
    )
    def _non_negative(cls, v):
        if v < 0:
            raise ValueError("must be >= 0")
        return v

    @validator("READ_PREFERENCE")
    def _read_preference(cls, v):
        if v not in READ_PREFERENCES:
            raise ValueError(f"Invalid read preference: {v}. Must be one of {READ_PREFERENCES}")
        return v

    @validator("READ_CONCERN_LEVEL")
    def _read_concern(cls, v):
        if v not in READ_CONCERN_LEVELS:
            raise ValueError(f"Invalid read concern: {v}. Must be one of {READ_CONCERN_LEVELS}")
        return v

    @validator("WRITE_CONCERN_J")
    def _journal_needs_ack(cls, v, values):
        # An unacknowledged write concern cannot request journaling.
        w = values.get("WRITE_CONCERN_W")
        if v and w is not None and w.strip() == "0":
            raise ValueError("WRITE_CONCERN_J=true requires WRITE_CONCERN_W other than 0")
        return v

    @validator("LOG_LEVEL")
    def _upcase_level(cls, v):
        return v.upper()

    @property
    def write_concern_w(self) -> Union[int, str]:
        return int(self.WRITE_CONCERN_W) if self.WRITE_CONCERN_W.isdigit() else self.WRITE_CONCERN_W

    def client_options(self) -> dict:
        """Keyword arguments for the async MongoDB client."""
        return {
            "maxPoolSize": self.MAX_POOL_SIZE,
            "serverSelectionTimeoutMS": self.SERVER_SELECTION_TIMEOUT_MS,
            "socketTimeoutMS": self.SOCKET_TIMEOUT_MS,
            "readPreference": self.READ_PREFERENCE,
            "readConcernLevel": self.READ_CONCERN_LEVEL,
            "w": self.write_concern_w,
            "journal": self.WRITE_CONCERN_J,
            "wTimeoutMS": self.WRITE_CONCERN_WTIMEOUT,
            "tz_aware": True,
        }


@lru_cache()
def get_settings() -> Settings:
    return Settings()
