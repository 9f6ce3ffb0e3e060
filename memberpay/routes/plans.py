from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.plan import Plan as PlanModel
from ..schemas.plan import Plan
from ..utils.errors import NotFoundError

router = APIRouter(prefix="/api/plans", tags=["plans"])


@router.get("", response_model=List[Plan])
def list_plans(include_inactive: bool = False, db: Session = Depends(get_db)):
    """Plans members can subscribe to, cheapest first."""
    plans = db.query(PlanModel)
    if not include_inactive:
        plans = plans.filter(PlanModel.is_active.is_(True))
    return plans.order_by(PlanModel.price, PlanModel.id).all()


@router.get("/{plan_key}", response_model=Plan)
def show_plan(plan_key: str, db: Session = Depends(get_db)):
    # numeric keys are ids, anything else is a slug
    if plan_key.isdigit():
        criterion = PlanModel.id == int(plan_key)
    else:
        criterion = PlanModel.slug == plan_key
    plan = db.query(PlanModel).filter(criterion).first()
    if plan is None:
        raise NotFoundError("Plan not found")
    return plan
