from fastapi import Depends, HTTPException, Path, Request, status

from config import Settings
from models import Room
from room_store import RoomStore


def get_store(request: Request) -> RoomStore:
    return request.app.state.store


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


async def get_room_by_code(
    room_code: str = Path(..., min_length=1, max_length=64),
    store: RoomStore = Depends(get_store),
) -> Room:
    """Dependency to fetch a live room by code."""
    room = store.get(room_code)

    if not room:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Room not found"
        )

    return room
