import asyncio
import contextlib
import os
from contextlib import asynccontextmanager
from datetime import timedelta
from functools import partial
from typing import List, Optional

import structlog
import uvicorn
from fastapi import APIRouter, Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.orm import Session

import auth
import crud
import database
import models
import schemas
import sharing
from config import Settings, get_settings
from drive import BlobStore, DriveBlobStore
from errors import AppError
from logging_config import configure_logging
from sweeper import ExpirySweeper
from uploads import MISSING_DATA, UploadPipeline

logger = structlog.get_logger()

# 上传相关路由的错误体使用 "error" 字段，其余使用 "message"
UPLOAD_PATHS = ("/upload", "/uploadToDrive", "/uploadAllToDrive")


def _error_body(request: Request, message: str) -> dict:
    key = "error" if request.url.path in UPLOAD_PATHS else "message"
    return {"success": False, key: message}


def create_app(settings: Optional[Settings] = None, blob_store: Optional[BlobStore] = None,
               session_factory=None) -> FastAPI:
    settings = settings or get_settings()
    session_factory = session_factory or database.SessionLocal
    retention = timedelta(hours=settings.retention_hours)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level, settings.log_json)
        models.Base.metadata.create_all(bind=session_factory.kw["bind"])

        # 启动阶段的配置错误（如无法读取服务账号）直接终止进程
        if app.state.pipeline is None:
            store = DriveBlobStore.from_service_account(settings.google_keyfile)
            app.state.pipeline = UploadPipeline(
                store, settings.google_drive_parent_folder_id, settings.upload_dir
            )

        sweeper = ExpirySweeper(
            session_factory,
            retention=retention,
            file_interval=timedelta(seconds=settings.file_sweep_interval_seconds),
            public_interval=timedelta(seconds=settings.public_sweep_interval_seconds),
            poll_seconds=settings.sweeper_poll_seconds,
        )
        sweeper_task = asyncio.create_task(sweeper.run_forever())
        logger.info("server_started", host=settings.host, port=settings.port)
        try:
            yield
        finally:
            sweeper_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper_task
            logger.info("server_stopped")

    app = FastAPI(title="Voice Recording Backend", lifespan=lifespan)
    app.state.settings = settings
    app.state.retention = retention
    app.state.pipeline = (
        UploadPipeline(blob_store, settings.google_drive_parent_folder_id, settings.upload_dir)
        if blob_store is not None
        else None
    )

    # 配置CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_origin],
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error("request_failed", path=request.url.path, error=exc.message)
        return JSONResponse(status_code=exc.status_code, content=_error_body(request, exc.message))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content=_error_body(request, MISSING_DATA))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("unhandled_error", path=request.url.path)
        return JSONResponse(status_code=500, content=_error_body(request, "Server error"))

    app.include_router(build_router())

    # 暂存目录中的录音在清理前可直接访问
    os.makedirs(settings.upload_dir, exist_ok=True)
    app.mount("/uploads", StaticFiles(directory=settings.upload_dir, check_dir=False), name="uploads")
    return app


def get_pipeline(request: Request) -> UploadPipeline:
    return request.app.state.pipeline


async def _in_executor(func, *args, **kwargs):
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, partial(func, *args, **kwargs))


def build_router():
    router = APIRouter()

    @router.post("/auth/signup", response_model=schemas.SignupResponse)
    async def signup(body: schemas.SignupRequest, db: Session = Depends(database.get_db)):
        user = auth.create_user(
            db,
            username=body.username,
            password=body.password,
            age=body.age,
            gender=body.gender,
            city=body.city,
            language=body.language,
        )
        logger.info("user_created", user_id=user.id)
        return {"success": True, "user": user}

    @router.post("/auth/login", response_model=schemas.LoginResponse)
    async def login(body: schemas.LoginRequest, db: Session = Depends(database.get_db)):
        user = auth.authenticate_user(db, body.username, body.password)
        return {"success": True, "user": user}

    @router.post("/upload", response_model=schemas.UploadResponse)
    async def upload(
        userId: Optional[int] = Form(None),
        username: Optional[str] = Form(None),
        folder: Optional[str] = Form(None),
        accessCode: Optional[str] = Form(None),
        audio: Optional[UploadFile] = File(None),
        db: Session = Depends(database.get_db),
        pipeline: UploadPipeline = Depends(get_pipeline),
    ):
        content = await audio.read() if audio is not None else None
        record = await _in_executor(
            pipeline.upload_multipart,
            db,
            owner_id=userId,
            username=username,
            filename=audio.filename if audio is not None else None,
            content=content,
            mime_type=audio.content_type if audio is not None else None,
            access_code=accessCode,
        )
        return {"success": True, "id": record.id, "driveUrl": record.drive_url}

    @router.post("/uploadToDrive")
    async def upload_to_drive(
        body: schemas.EncodedUploadRequest,
        db: Session = Depends(database.get_db),
        pipeline: UploadPipeline = Depends(get_pipeline),
    ):
        record = await _in_executor(
            pipeline.upload_encoded, db, body.user_id, body.folder, body.filename, body.data
        )
        return {"success": True, "driveUrl": record.drive_url, "id": record.id}

    @router.post("/uploadAllToDrive", response_model=schemas.BatchUploadResponse)
    async def upload_all_to_drive(
        body: schemas.BatchUploadRequest,
        db: Session = Depends(database.get_db),
        pipeline: UploadPipeline = Depends(get_pipeline),
    ):
        uploaded, failed = await _in_executor(
            pipeline.upload_batch, db, body.user_id, body.folder, body.recordings
        )
        return {"success": True, "uploaded": uploaded, "failed": failed}

    @router.get("/recordings/{user_id}", response_model=List[schemas.FileRecord])
    async def get_recordings(user_id: int, db: Session = Depends(database.get_db)):
        return crud.get_user_files(db, user_id)

    @router.post("/public/save", response_model=schemas.PublicSaveResponse, response_model_exclude_none=True)
    async def save_public(body: schemas.PublicSaveRequest, db: Session = Depends(database.get_db)):
        saved, failed = sharing.save_recordings(db, body.code, body.owner, body.recordings)
        return {
            "message": "Public recordings processed",
            "code": body.code,
            "saved": saved,
            "failed": failed,
        }

    @router.get("/public/{code}", response_model=schemas.PublicFetchResponse)
    async def get_public(code: str, request: Request, db: Session = Depends(database.get_db)):
        recordings = sharing.fetch_by_code(db, code, retention=request.app.state.retention)
        return {"recordings": recordings}

    return router


app = create_app()

if __name__ == '__main__':
    settings = get_settings()
    uvicorn.run("main:app", host=settings.host, port=settings.port)
