from fastapi import APIRouter

from aiforge.api.v1.endpoints import chat, coach, credentials, video

api_v1_router = APIRouter()

api_v1_router.include_router(credentials.router, prefix="/credentials", tags=["credentials"])
api_v1_router.include_router(chat.router, prefix="/chat", tags=["chat"])
api_v1_router.include_router(coach.router, prefix="/coach", tags=["coach"])
api_v1_router.include_router(video.router, prefix="/video-clips", tags=["video-clips"])
