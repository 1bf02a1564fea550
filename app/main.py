from contextlib import asynccontextmanager
import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException
from starlette.requests import Request
from starlette.responses import JSONResponse
from sqlalchemy import text

from app.core.config import settings
from app.core.redis import async_redis, redis_client
from app.db import engine, init_db
from app.routers import inventory_router

import uvicorn

# 配置日志
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

SERVICE_NAME = "inventory-reservation-engine"
SERVICE_VERSION = "1.0.0"


def check_database() -> bool:
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error("Database check failed: %s", e)
        return False


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {SERVICE_NAME}, hold window {settings.RESERVATION_HOLD_MINUTES} min")

    if not check_database():
        raise RuntimeError("database unavailable")
    logger.info("Database connection successful")

    # 本地 sqlite 没有迁移，启动时直接建表
    if settings.database_url.startswith("sqlite"):
        init_db()
        logger.info("SQLite schema ensured")

    # 缓存和分布式锁都是可选的
    try:
        await async_redis.ping()
        logger.info("Redis connected successfully")
    except Exception as e:
        logger.warning(f"Redis connection failed: {e}")
        logger.warning("Running without stock cache; row locks still guard reservations")

    yield

    await async_redis.aclose()
    engine.dispose()
    logger.info(f"Shutting down {SERVICE_NAME}...")


app = FastAPI(
    title="库存预占服务 API",
    description="预占 / 提交 / 释放 / 过期 的库存预占引擎，保证并发结算不超卖",
    version=SERVICE_VERSION,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(inventory_router.router, prefix="/api/v1")


# ==================== 全局异常处理 ====================

def _error_body(message, **extra) -> dict:
    return {"success": False, "message": message, **extra}


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Validation error on {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=422,
        content=_error_body("请求参数验证失败", details=jsonable_encoder(exc.errors())),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    log = logger.error if exc.status_code >= 500 else logger.info
    log(f"HTTP {exc.status_code} on {request.url.path}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc.detail))


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unexpected error on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content=_error_body("服务器内部错误"))


# ==================== 运维端点 ====================

@app.get("/health")
def health_check():
    """健康检查：数据库不可用即 unhealthy，Redis 不可用只是降级"""
    database_ok = check_database()
    try:
        redis_ok = bool(redis_client.ping())
    except Exception as e:
        logger.warning(f"Redis health check failed: {e}")
        redis_ok = False

    if not database_ok:
        status = "unhealthy"
    elif not redis_ok:
        status = "degraded"
    else:
        status = "healthy"

    return JSONResponse(
        status_code=200 if database_ok else 503,
        content={
            "status": status,
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "database": database_ok,
            "redis": redis_ok,
        },
    )


@app.get("/")
async def read_root():
    return {
        "message": "库存预占服务",
        "docs": "/docs",
        "health": "/health"
    }


if __name__ == "__main__":
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
