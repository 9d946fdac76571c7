from fastapi import APIRouter

from app.api.routes.auth import router as auth_router
from app.api.routes.discussions import router as discussions_router
from app.api.routes.health import router as health_router
from app.api.routes.posts import router as posts_router
from app.api.routes.users import router as users_router

router = APIRouter()
router.include_router(health_router, tags=["health"])
router.include_router(auth_router, prefix="/auth", tags=["auth"])
router.include_router(users_router, prefix="/users", tags=["users"])
router.include_router(discussions_router, prefix="/discussions", tags=["discussions"])
router.include_router(posts_router, prefix="/posts", tags=["posts"])
