import os
from typing import List, Literal
from dotenv import load_dotenv

# Load environment variables from .env file located in the project root.
# Environment variables explicitly set (e.g., by Docker Compose) take precedence.
BASE_DIR = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
ENV_PATH = os.path.join(BASE_DIR, '.env')
load_dotenv(ENV_PATH)


def parse_delay_tiers(value: str) -> List[int]:
    """
    Parses the retry delay tiers (milliseconds). Accepts a comma-separated string.
    Example: "1000,5000,30000" → [1000, 5000, 30000]
    """
    if not value or not value.strip():
        raise ValueError("RETRY_DELAY_TIERS_MS must list at least one delay")

    tiers = []
    for part in value.split(","):
        part = part.strip()
        if not part:
            continue
        if not part.isdigit():
            raise ValueError(f"Invalid retry delay tier: {part!r}")
        tiers.append(int(part))

    if not tiers:
        raise ValueError("RETRY_DELAY_TIERS_MS must list at least one delay")
    return tiers


class Settings:
    # --- General Environment Settings ---
    # ENVIRONMENT determines application behavior (e.g., SQL echo, logging verbosity).
    ENVIRONMENT: Literal["local", "staging",
                         "production"] = os.getenv('ENVIRONMENT', 'local')
    LOG_LEVEL: str = os.getenv('LOG_LEVEL', 'INFO')

    # --- PostgreSQL Database Configuration (idempotency ledger) ---
    # Defaults are set for local Docker Compose setup.
    POSTGRES_USER: str = os.getenv('POSTGRES_USER', 'notifier')
    POSTGRES_PASSWORD: str = os.getenv('POSTGRES_PASSWORD', 'notifier_password')
    POSTGRES_SERVER: str = os.getenv('POSTGRES_SERVER', 'postgres')
    POSTGRES_PORT: int = int(os.getenv('POSTGRES_PORT', 5432))
    POSTGRES_DB: str = os.getenv('POSTGRES_DB', 'notifier_db')

    # Full database URL. Takes precedence over the individual components when set.
    POSTGRES_DB_URL: str = os.getenv('POSTGRES_DB_URL', "")

    # Connection pool shared by all concurrent message handlers.
    DB_POOL_SIZE: int = int(os.getenv('DB_POOL_SIZE', 10))
    DB_MAX_OVERFLOW: int = int(os.getenv('DB_MAX_OVERFLOW', 0))

    # --- Kafka Configuration ---
    KAFKA_BOOTSTRAP_SERVERS: str = os.getenv('KAFKA_BOOTSTRAP_SERVERS', 'kafka:29092')
    KAFKA_CLIENT_ID: str = os.getenv('KAFKA_CLIENT_ID', 'notifier')
    KAFKA_TOPIC_NOTIFICATION_EVENTS: str = os.getenv('KAFKA_TOPIC_NOTIFICATION_EVENTS', 'notification_events')
    KAFKA_TOPIC_DEAD_LETTER: str = os.getenv('KAFKA_TOPIC_DEAD_LETTER', 'notification_dead_letter_queue')
    KAFKA_RETRY_EXCHANGE: str = os.getenv('KAFKA_RETRY_EXCHANGE', 'retry_exchange')
    RETRY_DELAY_TIERS_MS: List[int] = parse_delay_tiers(os.getenv('RETRY_DELAY_TIERS_MS', '1000,5000,30000'))
    KAFKA_TOPIC_PARTITIONS: int = int(os.getenv('KAFKA_TOPIC_PARTITIONS', 1))
    KAFKA_REPLICATION_FACTOR: int = int(os.getenv('KAFKA_REPLICATION_FACTOR', 1))
    KAFKA_CONSUMER_GROUP: str = os.getenv('KAFKA_CONSUMER_GROUP', 'notification-consumer')
    KAFKA_DELAY_CONSUMER_GROUP: str = os.getenv('KAFKA_DELAY_CONSUMER_GROUP', 'notification-delay-tiers')
    KAFKA_AUTO_OFFSET_RESET: str = os.getenv('KAFKA_AUTO_OFFSET_RESET', 'earliest')
    KAFKA_SESSION_TIMEOUT_MS: int = int(os.getenv('KAFKA_SESSION_TIMEOUT_MS', 30000))
    KAFKA_HEARTBEAT_INTERVAL_MS: int = int(os.getenv('KAFKA_HEARTBEAT_INTERVAL_MS', 3000))
    KAFKA_REQUEST_TIMEOUT_MS: int = int(os.getenv('KAFKA_REQUEST_TIMEOUT_MS', 40000))
    KAFKA_RETRY_BACKOFF_MS: int = int(os.getenv('KAFKA_RETRY_BACKOFF_MS', 100))
    KAFKA_LINGER_MS: int = int(os.getenv('KAFKA_LINGER_MS', 0))

    # --- Consumer / Retry Policy ---
    # CONSUMER_PREFETCH bounds the number of unacknowledged messages held per poll.
    CONSUMER_PREFETCH: int = int(os.getenv('CONSUMER_PREFETCH', 1))
    # MAX_RETRIES is the retry budget before an event is dead-lettered.
    MAX_RETRIES: int = int(os.getenv('MAX_RETRIES', 3))
    # Pause before a requeued message is fetched again after a bookkeeping failure.
    REQUEUE_BACKOFF_SECONDS: float = float(os.getenv('REQUEUE_BACKOFF_SECONDS', 1.0))

    # --- Startup Connectivity ---
    STARTUP_MAX_ATTEMPTS: int = int(os.getenv('STARTUP_MAX_ATTEMPTS', 10))
    STARTUP_RETRY_DELAY_SECONDS: float = float(os.getenv('STARTUP_RETRY_DELAY_SECONDS', 5))

    # --- Simulated Delivery Transport ---
    DELIVERY_LATENCY_SECONDS: float = float(os.getenv('DELIVERY_LATENCY_SECONDS', 0.1))
    # Any recipient containing this marker fails delivery.
    DELIVERY_FAILURE_MARKER: str = os.getenv('DELIVERY_FAILURE_MARKER', 'fail')

    @property
    def SQLALCHEMY_DATABASE_URI(self) -> str:
        """
        Constructs the SQLAlchemy database URI.
        Prioritizes a full URL (POSTGRES_DB_URL) over individual components.
        """
        if self.POSTGRES_DB_URL:
            return self.POSTGRES_DB_URL

        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )


# Instantiate the settings object to be used throughout the application
settings = Settings()
