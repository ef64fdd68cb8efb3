# edugrade/main.py
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from edugrade.core.config import settings
from edugrade.core.exceptions import GradingError
from edugrade.core.logging import setup_logging
from edugrade.db.base import Base
from edugrade.db.session import engine
from edugrade.api.v1.endpoints import attempts, exams, grades, grading, health
from edugrade import models  # noqa

setup_logging()

app = FastAPI(title=settings.PROJECT_NAME)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup():
    Base.metadata.create_all(bind=engine)


@app.exception_handler(GradingError)
def grading_error_handler(request: Request, exc: GradingError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


app.include_router(grades.router, prefix="/api/v1")
app.include_router(exams.router, prefix="/api/v1")
app.include_router(attempts.router, prefix="/api/v1")
app.include_router(grading.router, prefix="/api/v1")
app.include_router(health.router, prefix="/api/v1")
