from pathfinder.core.utils.checks import first_not_none, ifnone
from pathfinder.core.config import Config, CoreConfig
from pathfinder.core.base import Pathfinder, PathfinderABC, PathfinderMeta
from pathfinder.core.logging.logger import get_logger, setup_logger

setup_logger()  # Initialize the default logger

from pathfinder.core.observables.event_bus import EventBus
from pathfinder.core.exceptions import (
    BadRequestError,
    BrokerUnavailableError,
    InvalidInputError,
    NotFoundError,
    PathfinderError,
    PersistenceError,
    QueueNotFoundError,
    ServiceUnavailableError,
)

__all__ = [
    "BadRequestError",
    "BrokerUnavailableError",
    "Config",
    "CoreConfig",
    "EventBus",
    "first_not_none",
    "get_logger",
    "ifnone",
    "InvalidInputError",
    "NotFoundError",
    "Pathfinder",
    "PathfinderABC",
    "PathfinderError",
    "PathfinderMeta",
    "PersistenceError",
    "QueueNotFoundError",
    "ServiceUnavailableError",
    "setup_logger",
]
