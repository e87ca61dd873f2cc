# notepipe/deps.py
from typing import Iterator

from fastapi import Depends, Request
from sqlmodel import Session

from .config import Settings
from .services.pipeline import Pipeline


def get_pipeline(request: Request) -> Pipeline:
    return request.app.state.pipeline


def get_app_settings(pipeline: Pipeline = Depends(get_pipeline)) -> Settings:
    return pipeline.settings


def get_session(pipeline: Pipeline = Depends(get_pipeline)) -> Iterator[Session]:
    with Session(pipeline.engine) as session:
        yield session
