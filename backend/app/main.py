from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.routes import (
    absences,
    academics,
    generator,
    health,
    offers,
    timetable,
)
from app.core.config import get_settings
from app.core.exceptions import AppError
from app.db.bootstrap import ensure_runtime_schema

settings = get_settings()


@asynccontextmanager
async def lifespan(_: FastAPI):
    ensure_runtime_schema()
    yield


async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.message, "details": exc.details},
    )

app = FastAPI(title=settings.project_name, lifespan=lifespan)
app.add_exception_handler(AppError, app_error_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, prefix=settings.api_prefix, tags=["health"])
app.include_router(academics.router, prefix=settings.api_prefix, tags=["academics"])
app.include_router(generator.router, prefix=settings.api_prefix, tags=["generator"])
app.include_router(timetable.router, prefix=settings.api_prefix, tags=["timetable"])
app.include_router(absences.router, prefix=settings.api_prefix, tags=["absences"])
app.include_router(offers.router, prefix=settings.api_prefix, tags=["offers"])
