from parimutuel.models.base import Base
from parimutuel.models.bet import Bet
from parimutuel.models.event_log import EventLog
from parimutuel.models.pool import Pool
from parimutuel.models.price_snapshot import PriceSnapshot

__all__ = [
    "Base",
    "Bet",
    "EventLog",
    "Pool",
    "PriceSnapshot",
]
