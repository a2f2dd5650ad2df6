# Nastavení pro bot a moduly
import os

BOT_PREFIX = "*"  # Prefix pro příkazy

# Redis Configuration
REDIS_URL = os.getenv("REDIS_URL", "redis://redis-stats:6379/0")

# Host of the public stats page (used in links from the stats command)
STATS_HOST = os.getenv("STATS_HOST", "stats.nepornu.cz")

# Server stats tuning
STATS_LOOP_INTERVAL_SEC = int(os.getenv("STATS_LOOP_INTERVAL_SEC", "60"))
STATS_RETENTION_SEC = 24 * 60 * 60  # rolling window for joined/left/messages
CONFIG_CACHE_TTL_SEC = int(os.getenv("CONFIG_CACHE_TTL_SEC", "30"))
STATS_TOP_CHANNELS = 5  # channels listed in the stats embed

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Web (public stats page)
WEB_HOST = os.getenv("WEB_HOST", "0.0.0.0")
WEB_PORT = int(os.getenv("WEB_PORT", "8092"))

# Command Configuration
COMMANDS_CONFIG = {
    "stats": {"enabled": True, "admin_only": False},
    "statsconfig": {"enabled": True, "admin_only": True},
}
