from typing import Annotated

from fastapi import Depends, Request

from mockify.config import Settings
from mockify.services.job_store import JobStore
from mockify.services.render_service import RenderService


def get_job_store(request: Request) -> JobStore:
    return request.app.state.job_store


def get_render_service(request: Request) -> RenderService:
    return request.app.state.render_service


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


JobStoreDep = Annotated[JobStore, Depends(get_job_store)]
RenderServiceDep = Annotated[RenderService, Depends(get_render_service)]
SettingsDep = Annotated[Settings, Depends(get_app_settings)]
