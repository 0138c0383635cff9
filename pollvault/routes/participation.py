from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from pollvault.database import get_db
from pollvault.services.participation_service import list_participation

router = APIRouter(prefix="/participation", tags=["participation"])


@router.get("/{user_identifier}")
async def get_participation(user_identifier: str, db: AsyncSession = Depends(get_db)):
    records = await list_participation(db, user_identifier)
    return {
        "user_identifier": user_identifier.strip().lower(),
        "participation": [r.to_dict() for r in records],
    }
