"""
Request dependencies shared by the API routers.
"""
from typing import Optional

from fastapi import Header, HTTPException, Request

from streamrelay.services.container import Services


def get_services(request: Request) -> Services:
    return request.app.state.services


async def get_viewer_id(
    x_user_id: Optional[str] = Header(None, description="Authenticated viewer identifier"),
) -> str:
    """Viewer identity established by the session layer in front of the API."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Authentication required")
    return x_user_id.strip()
