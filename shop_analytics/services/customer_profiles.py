"""
Customer profile write-behind

Folds each CLV computation into the customer_profiles table. The batch is
one transaction: either every profile is written or none is.
"""
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from shop_analytics.models.customer_profile import CustomerProfile
from shop_analytics.schemas.analytics import CustomerCLV
from shop_analytics.utils.helpers import as_utc
from shop_analytics.utils.logger import log


class CustomerProfileRepository:
    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def upsert_profiles(self, shop: str, customers: List[CustomerCLV]) -> bool:
        """
        Upsert a profile per customer.

        Returns:
            True if the batch committed. Failures are rolled back and logged,
            never raised, so the CLV result is still returned to the caller.
        """
        if not customers:
            return True

        db = self.session_factory()
        try:
            ids = [c.customer_id for c in customers]
            existing: Dict[str, CustomerProfile] = {
                p.customer_id: p
                for p in db.query(CustomerProfile).filter(
                    CustomerProfile.shop == shop,
                    CustomerProfile.customer_id.in_(ids)
                ).all()
            }

            for customer in customers:
                profile = existing.get(customer.customer_id)
                if profile is None:
                    profile = CustomerProfile(shop=shop, customer_id=customer.customer_id)
                    db.add(profile)
                    existing[customer.customer_id] = profile

                profile.clv_score = customer.predicted_clv
                profile.total_orders = customer.order_count
                profile.total_spent = customer.total_spent
                # SQLite drops the offset, so store the UTC instant
                profile.last_order_date = (
                    as_utc(customer.last_order_date) if customer.last_order_date else None
                )
                profile.segment = customer.segment

            db.commit()
            log.info(f"Upserted {len(customers)} customer profiles (shop={shop})")
            return True

        except Exception as e:
            db.rollback()
            log.error(f"Batch profile update error (shop={shop}, customers={len(customers)}): {e}")
            return False
        finally:
            db.close()

    def get_profiles(self, shop: str, segment: Optional[str] = None) -> List[CustomerProfile]:
        db = self.session_factory()
        try:
            query = db.query(CustomerProfile).filter(CustomerProfile.shop == shop)
            if segment:
                query = query.filter(CustomerProfile.segment == segment)
            return query.order_by(CustomerProfile.clv_score.desc()).all()
        finally:
            db.close()
