from fastapi import APIRouter, Depends, HTTPException

from config import Settings
from dependencies import get_app_settings, get_room_by_code, get_store
from models import Room
from room_store import RoomStore
from schemas import HealthResponse, RoomCodeResponse, RoomInfoResponse
from utils import build_join_url, generate_qr_code_base64, generate_room_code, get_frontend_url

router = APIRouter(prefix="/api/rooms", tags=["rooms"])
status_router = APIRouter(tags=["status"])

@status_router.get("/")
async def root():
    return {"status": "ok", "message": "IdeaSynergy API is running"}

@status_router.get("/health", response_model=HealthResponse)
async def health(store: RoomStore = Depends(get_store)):
    return HealthResponse(
        room_count=store.room_count,
        total_participants=store.participant_count,
    )

@router.post("", response_model=RoomCodeResponse)
async def create_room_code(
    store: RoomStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
):
    # Generate a code no live room is using; the room itself is created on first join
    for _ in range(5):
        code = generate_room_code()
        if code not in store:
            break
    else:
        raise HTTPException(status_code=500, detail="Could not generate unique room code")

    join_url = build_join_url(get_frontend_url(settings.cors_origins), code)
    return RoomCodeResponse(
        code=code,
        join_url=join_url,
        qr_code=generate_qr_code_base64(join_url),
    )

@router.get("/{room_code}", response_model=RoomInfoResponse)
async def get_room(
    room: Room = Depends(get_room_by_code)
):
    return RoomInfoResponse(
        code=room.code,
        participants=room.participant_count,
        idea_count=len(room.ideas),
    )
