# src/pgnode/main.py

import os
import signal
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from pgnode.core.config import settings
from pgnode.core.logging import configure_logging
from pgnode.api.router import router
from pgnode.schemas.common import JsonFaildResponse
from pgnode.services.exceptions import ServiceException
from pgnode.services.node import PostgresqlNode

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

async def shutdown_process(exc: Exception) -> None:
    """没有管理连接节点无法工作: 交给进程管理器重启"""
    logger.critical(f"Fatal error, terminating process: {exc}")
    os.kill(os.getpid(), signal.SIGTERM)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # --- [关键] 节点生命周期: 连接、迁移、配额、一致性检查、定时任务 ---
    node = PostgresqlNode(settings, on_fatal=shutdown_process)
    await node.start()
    app.state.node = node

    yield

    # --- 清理 ---
    await node.stop()

app = FastAPI(
    title="pgnode",
    lifespan=lifespan
)

app.include_router(router)

def _error(status_code: int, msg: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=JsonFaildResponse(status=status_code, msg=msg).model_dump(),
    )

@app.exception_handler(ServiceException)
async def service_exception_handler(request: Request, exc: ServiceException):
    # 处理所有来自服务层的、可预期的业务逻辑错误
    logger.warning(f"{request.method} {request.url.path} failed: [{exc.code}] {exc.message}")
    return _error(exc.http_status, exc.message)

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, str(exc.errors()))

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    # 重写 FastAPI 默认的 HTTPException 处理器，以匹配我们的响应格式
    return JSONResponse(
        status_code=exc.status_code,
        content={"status": exc.status_code, "msg": exc.detail, "data": None},
        headers=exc.headers,
    )

@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    # 这个处理器只处理真正未预料到的服务器内部错误
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error")

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("pgnode.main:app", host=settings.APP_HOST, port=settings.APP_PORT)
