from fastapi import APIRouter

from app.api.auth import router as auth_router
from app.api.friends import router as friends_router
from app.api.messages import router as messages_router
from app.api.rooms import router as rooms_router

router = APIRouter()

router.include_router(auth_router, prefix="/auth", tags=["auth"])
router.include_router(friends_router)
router.include_router(rooms_router)
router.include_router(messages_router)


@router.get("/", tags=["root"])
def read_root() -> dict[str, str]:
    return {"message": "Welcome to the Parley API"}
