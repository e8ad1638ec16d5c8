from dependency_injector import containers, providers

from stockrewards.config import get_settings
from stockrewards.services.corporate_action_service import CorporateActionService
from stockrewards.services.portfolio_service import PortfolioService
from stockrewards.services.price_service import PriceCache, PriceService
from stockrewards.services.reward_service import RewardService
from stockrewards.services.validation_service import ValidationService


class ConfigModule(containers.DeclarativeContainer):
    """Application configuration."""

    config = providers.Singleton(get_settings)


class ServiceModule(containers.DeclarativeContainer):
    """Service layer dependencies.

    Services are built per request with the request's DB session (see deps.py);
    the price cache is shared by every request in the process.
    """

    config = providers.DependenciesContainer()

    price_cache = providers.Singleton(PriceCache.from_settings, settings=config.config)

    price_service = providers.Factory(PriceService, cache=price_cache, settings=config.config)
    validation_service = providers.Factory(ValidationService, settings=config.config)
    reward_service = providers.Factory(RewardService, settings=config.config)
    corporate_action_service = providers.Factory(
        CorporateActionService, settings=config.config
    )
    portfolio_service = providers.Factory(PortfolioService, settings=config.config)


class Container(containers.DeclarativeContainer):
    """Application container."""

    config = providers.Container(ConfigModule)
    services = providers.Container(ServiceModule, config=config)
