from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from blogcms.database import get_db
from blogcms.schemas import UserCreate, UserResponse
from blogcms.services import user_service

router = APIRouter(prefix="/api/v1/users", tags=["users"])

@router.get("", response_model=list[UserResponse])
async def list_users(db: AsyncSession = Depends(get_db)):
    return await user_service.get_users(db)

@router.get("/{user_id}")
async def get_user(user_id: int, db: AsyncSession = Depends(get_db)):
    return await user_service.get_user(db, user_id)

# Profiles are provisioned by the identity service when an account is created.
@router.post("", status_code=201, response_model=UserResponse)
async def create_user(data: UserCreate, db: AsyncSession = Depends(get_db)):
    return await user_service.create_user(db, data)
