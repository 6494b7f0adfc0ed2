"""FastAPI dependencies."""

from fastapi import Request

from fileswift.services.container import UploadServices


def get_services(request: Request) -> UploadServices:
    return request.app.state.services
