# farmland/deps.py
from fastapi import Depends
from sqlalchemy.orm import sessionmaker

from farmland.config import settings
from farmland.db import SessionLocal
from farmland.ingest_service import FarmIngestService
from farmland.repository import FarmRepository


def get_session_factory() -> sessionmaker:
    return SessionLocal


def get_repository(session_factory: sessionmaker = Depends(get_session_factory)) -> FarmRepository:
    return FarmRepository.from_settings(session_factory, settings)


def get_ingest_service(repo: FarmRepository = Depends(get_repository)) -> FarmIngestService:
    return FarmIngestService(repo)
