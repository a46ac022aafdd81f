from fastapi import Request

from ..client import DobClient


def get_client(request: Request) -> DobClient:
    return request.app.state.client
