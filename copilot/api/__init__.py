"""API router for v1 endpoints."""

from fastapi import APIRouter

from copilot.api import chat

router = APIRouter()

router.include_router(chat.router, prefix="/chat", tags=["chat"])
