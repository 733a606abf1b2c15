"""Shared FastAPI dependencies."""

from collections.abc import AsyncGenerator

from fastapi import HTTPException, Request

from colorcompete.automation.context import AutomationContext, build_automation_context
from colorcompete.automation.scheduler import AutomationScheduler
from colorcompete.database import get_session as _get_session
from colorcompete.redis_client import get_optional_redis as _get_optional_redis

get_db = _get_session


async def get_optional_redis_dep() -> AsyncGenerator[object, None]:
    """Yield the Redis client, or None when Redis is not configured."""
    yield _get_optional_redis()


def get_automation_context(request: Request) -> AutomationContext:
    """The app-wide automation context, built on first use."""
    ctx = getattr(request.app.state, "automation_context", None)
    if ctx is None:
        ctx = build_automation_context()
        request.app.state.automation_context = ctx
    return ctx


def get_scheduler(request: Request) -> AutomationScheduler:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Automation scheduler is not running")
    return scheduler
