# app/api/routes/health.py
from fastapi import APIRouter
from sqlalchemy import text

from app.api.deps import DBDep

router = APIRouter()


@router.get("/health")
async def health():
    return {"status": "ok"}


@router.get("/health/db")
async def health_db(db: DBDep):
    await db.execute(text("SELECT 1"))
    return {"status": "ok", "db": "ok"}
