"""
Seed the default municipal departments.

Run with ``civic-issues-seed`` after configuring DATABASE_URL.
"""

import logging
from typing import List

from sqlalchemy.orm import Session

from . import storage
from .models.issue import DepartmentCreate
from .database import SessionLocal, engine
from .logging_config import setup_logging
from .models.models import Base, Department

logger = logging.getLogger(__name__)

DEFAULT_DEPARTMENTS = [
    DepartmentCreate(
        name="Public Works",
        description="Road repairs, potholes and infrastructure maintenance",
        contact_email="publicworks@city.gov",
        contact_phone="+1-555-0101",
    ),
    DepartmentCreate(
        name="Sanitation",
        description="Garbage collection, waste management and street cleaning",
        contact_email="sanitation@city.gov",
        contact_phone="+1-555-0102",
    ),
    DepartmentCreate(
        name="Electrical",
        description="Streetlights, traffic signals and electrical infrastructure",
        contact_email="electrical@city.gov",
        contact_phone="+1-555-0103",
    ),
    DepartmentCreate(
        name="Water & Utilities",
        description="Water leaks, pipe repairs and utility maintenance",
        contact_email="utilities@city.gov",
        contact_phone="+1-555-0104",
    ),
]


def seed_departments(db: Session) -> List[Department]:
    """Create any default department that does not exist yet, matched by name."""
    existing = {name for (name,) in db.query(Department.name).all()}
    created = []
    for payload in DEFAULT_DEPARTMENTS:
        if payload.name in existing:
            logger.info("Department %s already exists", payload.name)
            continue
        created.append(storage.create_department(db, payload))
        logger.info("Created department %s", payload.name)
    return created


def main() -> None:
    setup_logging()
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        created = seed_departments(db)
        logger.info("Seeded %d department(s); %d active in total",
                    len(created), len(storage.list_departments(db)))
    finally:
        db.close()


if __name__ == "__main__":
    main()
