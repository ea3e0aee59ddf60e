"""Rate table lookups and maintenance."""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from ..models import MetalType, Rate, RateHistory, RateUnit
from ..config import EXCHANGE_DEDUCTION_PERCENT
from .errors import NotFoundError, ValidationError
from .pricing import RawItem, exchange_rate, to_decimal

logger = logging.getLogger(__name__)


# Purities offered per metal; prices start empty until the admin enters them
DEFAULT_RATE_GRID: Dict[MetalType, List[str]] = {
    MetalType.GOLD: ["24K", "22K", "18K", "14K"],
    MetalType.SILVER: ["999", "925", "900", "850", "800"],
    MetalType.DIAMOND: ["SI1", "VS1", "VVS1", "IF", "FL"],
    MetalType.PLATINUM: ["950", "900", "850", "999"],
    MetalType.ANTIQUE_POLKI: ["Standard"],
    MetalType.OTHERS: ["Standard"],
}


def default_unit_for(metal_type: MetalType) -> RateUnit:
    return RateUnit.CARAT if MetalType(metal_type) == MetalType.DIAMOND else RateUnit.GRAM


class RateService:
    """Rate lookups consumed by pricing, and rate maintenance"""

    @staticmethod
    def find_rate(db: Session, metal_type: MetalType, purity: str) -> Optional[Rate]:
        """Active, priced rate for the pair, or None."""
        return db.query(Rate).filter(
            Rate.metal_type == MetalType(metal_type),
            Rate.purity == purity,
            Rate.is_active == True,  # noqa: E712
            Rate.rate.isnot(None)
        ).order_by(
            Rate.effective_date.desc()
        ).first()

    @staticmethod
    def resolve_rate(db: Session, raw: RawItem) -> Optional[Decimal]:
        """Manual rate on the item wins; otherwise the rate table, per gram (or carat)."""
        if raw.rate is not None:
            return to_decimal(raw.rate, "rate")
        rate = RateService.find_rate(db, raw.metal_type, raw.purity)
        return rate.per_gram_rate if rate else None

    @staticmethod
    def list_grouped(db: Session) -> Dict[str, Dict[str, Optional[float]]]:
        """Rates as metal -> purity -> rate; unpriced pairs map to None."""
        grouped = {metal.value: {purity: None for purity in purities}
                   for metal, purities in DEFAULT_RATE_GRID.items()}
        for rate in db.query(Rate).all():
            grouped.setdefault(rate.metal_type.value, {})[rate.purity] = (
                float(rate.rate) if rate.rate is not None else None
            )
        return grouped

    @staticmethod
    def list_active(db: Session) -> List[Rate]:
        return db.query(Rate).filter(
            Rate.is_active == True,  # noqa: E712
            Rate.rate.isnot(None)
        ).order_by(Rate.metal_type, Rate.purity).all()

    @staticmethod
    def upsert_rate(
        db: Session,
        metal_type: MetalType,
        purity: str,
        rate,
        user_id: Optional[int],
        unit: Optional[RateUnit] = None,
        gst_applicable: Optional[bool] = None
    ) -> Rate:
        """Create or update a rate, recording the change in rate history."""
        new_rate = to_decimal(rate, "rate")
        if new_rate <= 0:
            raise ValidationError("rate must be greater than zero")

        metal_type = MetalType(metal_type)
        existing = db.query(Rate).filter(
            Rate.metal_type == metal_type,
            Rate.purity == purity
        ).with_for_update().first()

        old_rate = existing.rate if existing else None
        if existing is None:
            existing = Rate(
                metal_type=metal_type,
                purity=purity,
                unit=unit or default_unit_for(metal_type),
                gst_applicable=True if gst_applicable is None else gst_applicable,
                is_active=True,
            )
            db.add(existing)
        elif unit is not None:
            existing.unit = unit
        if gst_applicable is not None:
            existing.gst_applicable = gst_applicable

        now = datetime.utcnow()
        existing.rate = new_rate
        existing.updated_by = user_id
        existing.effective_date = now
        existing.updated_at = now
        db.flush()

        db.add(RateHistory(
            rate_id=existing.id,
            metal_type=metal_type,
            purity=purity,
            old_rate=old_rate,
            new_rate=new_rate,
            unit=existing.unit,
            effective_date=now,
            updated_by=user_id,
        ))
        logger.info("Rate %s %s set to %s (was %s)", metal_type.value, purity, new_rate, old_rate)
        return existing

    @staticmethod
    def history(
        db: Session,
        metal_type: Optional[MetalType] = None,
        purity: Optional[str] = None,
        limit: int = 100
    ) -> List[RateHistory]:
        query = db.query(RateHistory)
        if metal_type:
            query = query.filter(RateHistory.metal_type == MetalType(metal_type))
        if purity:
            query = query.filter(RateHistory.purity == purity)
        return query.order_by(RateHistory.created_at.desc(), RateHistory.id.desc()).limit(limit).all()

    @staticmethod
    def toggle_status(db: Session, rate_id: int) -> Rate:
        rate = db.query(Rate).filter(Rate.id == rate_id).first()
        if not rate:
            raise NotFoundError(f"Rate {rate_id} not found")
        rate.is_active = not rate.is_active
        rate.updated_at = datetime.utcnow()
        return rate

    @staticmethod
    def delete_rate(db: Session, rate_id: int) -> None:
        rate = db.query(Rate).filter(Rate.id == rate_id).first()
        if not rate:
            raise NotFoundError(f"Rate {rate_id} not found")
        db.delete(rate)

    @staticmethod
    def exchange_quote(db: Session, metal_type: MetalType, purity: str) -> Optional[dict]:
        rate = RateService.find_rate(db, metal_type, purity)
        if rate is None:
            return None
        return {
            "metal_type": rate.metal_type.value,
            "purity": rate.purity,
            "market_rate": float(rate.rate),
            "exchange_rate": float(exchange_rate(rate.rate)),
            "deduction_percent": float(EXCHANGE_DEDUCTION_PERCENT),
            "unit": rate.unit.value,
        }
