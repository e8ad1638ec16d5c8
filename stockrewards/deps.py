from fastapi import Depends, Request
from sqlalchemy.orm import Session

from stockrewards.containers import Container
from stockrewards.database.session import get_db

# Services
from stockrewards.services.corporate_action_service import CorporateActionService
from stockrewards.services.portfolio_service import PortfolioService
from stockrewards.services.price_service import PriceService
from stockrewards.services.reward_service import RewardService
from stockrewards.services.validation_service import ValidationService


def get_container(request: Request) -> Container:
    return request.app.container


def get_price_service(
    request: Request, db: Session = Depends(get_db)
) -> PriceService:
    return get_container(request).services.price_service(db=db)


def get_validation_service(
    request: Request, db: Session = Depends(get_db)
) -> ValidationService:
    return get_container(request).services.validation_service(db=db)


def get_reward_service(
    request: Request,
    db: Session = Depends(get_db),
    price_service: PriceService = Depends(get_price_service),
) -> RewardService:
    return get_container(request).services.reward_service(
        db=db, price_service=price_service
    )


def get_corporate_action_service(
    request: Request, db: Session = Depends(get_db)
) -> CorporateActionService:
    return get_container(request).services.corporate_action_service(db=db)


def get_portfolio_service(
    request: Request,
    db: Session = Depends(get_db),
    price_service: PriceService = Depends(get_price_service),
) -> PortfolioService:
    return get_container(request).services.portfolio_service(
        db=db, price_service=price_service
    )
