import logging
from decimal import Decimal
from sqlalchemy.orm import Session
from ..models.plan import Plan
from ..models.user import User
from ..config import config

logger = logging.getLogger(__name__)

DEFAULT_PLANS = [
    {
        "name": "Community",
        "slug": "community",
        "description": "Forum access and member-only event pricing",
        "price": Decimal("500.00"),
        "invoice_period": "month",
        "ticket_discount_percent": Decimal("5"),
        "features": ["Member directory", "Community forums", "5% off paid events"],
    },
    {
        "name": "Professional",
        "slug": "professional",
        "description": "Everything in Community plus lab bookings",
        "price": Decimal("2500.00"),
        "invoice_period": "month",
        "ticket_discount_percent": Decimal("15"),
        "features": ["Everything in Community", "Lab space bookings", "15% off paid events"],
    },
    {
        "name": "Patron",
        "slug": "patron",
        "description": "Supports the community and unlocks every benefit",
        "price": Decimal("10000.00"),
        "invoice_period": "month",
        "ticket_discount_percent": Decimal("25"),
        "features": ["Everything in Professional", "Priority registration", "25% off paid events"],
    },
]

def create_default_admin(db: Session) -> None:
    """
    Create default admin user if it doesn't exist
    """
    admin_email = config.get("ADMIN_EMAIL") or "admin@memberpay.local"

    if db.query(User).filter(User.email == admin_email).first():
        return

    admin = User(
        email=admin_email,
        first_name="Admin",
        last_name="User",
        role="admin",
    )
    db.add(admin)
    db.commit()
    logger.info("Created default admin user %s", admin_email)

def create_default_plans(db: Session) -> None:
    """
    Create the default subscription plans if none exist
    """
    if db.query(Plan).count() > 0:
        return

    for plan_data in DEFAULT_PLANS:
        db.add(Plan(currency=config["DEFAULT_CURRENCY"], **plan_data))
    db.commit()
    logger.info("Created %d default plans", len(DEFAULT_PLANS))
