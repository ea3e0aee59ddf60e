"""
Idempotent seed data: the empty rate grid and an admin user.

Nothing here runs on connection or at application start; call it from
``scripts/seed_data.py`` or a test.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from . import models
from .security import get_password_hash
from .services.rate_service import DEFAULT_RATE_GRID, default_unit_for

logger = logging.getLogger(__name__)


def seed_rate_grid(db: Session) -> int:
    """
    Create a rate row for every metal/purity pair that has none.

    Rows start unpriced and inactive; pricing only sees a pair once the admin
    enters a rate. Existing rows are left untouched.
    """
    existing = {(r.metal_type, r.purity) for r in db.query(models.Rate.metal_type, models.Rate.purity)}
    created = 0
    for metal, purities in DEFAULT_RATE_GRID.items():
        for purity in purities:
            if (metal, purity) in existing:
                continue
            db.add(models.Rate(
                metal_type=metal,
                purity=purity,
                rate=None,
                unit=default_unit_for(metal),
                is_active=False,
            ))
            created += 1
    db.flush()
    logger.info("Rate grid seeded: %d new pairs", created)
    return created


def seed_admin(
    db: Session,
    username: str,
    email: str,
    password: str,
    full_name: str = "Admin"
) -> Optional[models.User]:
    """Create the admin user unless the username is taken. Returns the new user or None."""
    if db.query(models.User).filter(models.User.username == username).first():
        logger.info("Admin user %s already exists", username)
        return None

    user = models.User(
        full_name=full_name,
        email=email,
        username=username,
        password_hash=get_password_hash(password),
        role="Admin",
    )
    db.add(user)
    db.flush()
    logger.info("Created admin user %s", username)
    return user
