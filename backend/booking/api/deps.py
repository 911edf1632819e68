from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status

from booking.services.lifecycle import AppointmentLifecycleManager
from booking.services.schedule import ScheduleReader


@dataclass
class RequestContext:
    tenant_id: str
    user_id: str


def get_request_context(
    x_tenant_id: Optional[str] = Header(default=None),
    x_user_id: Optional[str] = Header(default=None),
) -> RequestContext:
    if not x_tenant_id or not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing caller identity")
    return RequestContext(tenant_id=x_tenant_id, user_id=x_user_id)


def get_audit_context(request: Request, caller: RequestContext = Depends(get_request_context)) -> dict:
    return {
        "ip": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
        "request_path": request.url.path,
    }


def get_lifecycle(request: Request) -> AppointmentLifecycleManager:
    return request.app.state.lifecycle


def get_schedule(request: Request) -> ScheduleReader:
    return request.app.state.schedule


CurrentCaller = Depends(get_request_context)
