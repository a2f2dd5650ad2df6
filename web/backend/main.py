from contextlib import asynccontextmanager
import logging

from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse
import redis.asyncio as redis
from redis.exceptions import RedisError
import uvicorn

from config import config
from shared.errors import ConfigUnavailable, StatsUnavailable
from shared.redis_client import close_redis, get_redis
from shared.stats_config import ConfigResolver
from shared.stats_retriever import retrieve_full_stats

logger = logging.getLogger("serverstats.web")

_resolver = None


async def get_redis_dep() -> redis.Redis:
    return await get_redis()


async def get_resolver(r: redis.Redis = Depends(get_redis_dep)) -> ConfigResolver:
    """One cached resolver per process."""
    global _resolver
    if _resolver is None:
        _resolver = ConfigResolver(r)
    return _resolver


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await close_redis()


app = FastAPI(title="Server Stats", docs_url=None, redoc_url=None, lifespan=lifespan)


def _unavailable() -> JSONResponse:
    return JSONResponse({"error": "stats unavailable"}, status_code=503)


@app.get("/public/{guild_id}/stats")
async def public_stats(
    guild_id: int,
    r: redis.Redis = Depends(get_redis_dep),
    resolver: ConfigResolver = Depends(get_resolver),
):
    """24h stats of a guild, only if the guild made them public."""
    try:
        conf = await resolver.get_config(guild_id)
    except ConfigUnavailable as e:
        logger.error(f"Public stats: {e}")
        return _unavailable()

    if not conf.public:
        return JSONResponse({"error": "stats are private"}, status_code=403)

    try:
        stats = await retrieve_full_stats(r, guild_id)
    except StatsUnavailable as e:
        logger.error(f"Public stats: {e}")
        return _unavailable()

    data = stats.to_dict()
    data["guild_id"] = str(guild_id)
    return data


@app.get("/health")
async def health(r: redis.Redis = Depends(get_redis_dep)):
    try:
        await r.ping()
    except RedisError as e:
        logger.warning(f"Health check: redis unreachable: {e}")
        return JSONResponse({"status": "error", "redis": False}, status_code=503)
    return {"status": "ok", "redis": True}


if __name__ == "__main__":
    logging.basicConfig(level=config.LOG_LEVEL, format=config.LOG_FORMAT)
    uvicorn.run(app, host=config.WEB_HOST, port=config.WEB_PORT)
