from enum import StrEnum


class PoolStatus(StrEnum):
    UPCOMING = "UPCOMING"
    JOINING = "JOINING"
    ACTIVE = "ACTIVE"
    RESOLVED = "RESOLVED"
    CLAIMABLE = "CLAIMABLE"


class Side(StrEnum):
    UP = "UP"
    DOWN = "DOWN"


class SnapshotType(StrEnum):
    STRIKE = "STRIKE"
    FINAL = "FINAL"


class EventType(StrEnum):
    POOL_CREATED = "POOL_CREATED"
    POOL_JOINING = "POOL_JOINING"
    POOL_ACTIVATED = "POOL_ACTIVATED"
    POOL_RESOLVED = "POOL_RESOLVED"
    POOL_CLAIMABLE = "POOL_CLAIMABLE"
    POOLS_CLEANUP = "POOLS_CLEANUP"
    DEPOSIT_CONFIRMED = "DEPOSIT_CONFIRMED"
    CLAIM_SUBMITTED = "CLAIM_SUBMITTED"
    CLAIM_CONFIRMED = "CLAIM_CONFIRMED"


# Statuses in which deposits may still land on the pool totals.
DEPOSIT_STATUSES = (PoolStatus.JOINING, PoolStatus.ACTIVE)
# Statuses in which a winning bet may be claimed.
CLAIM_STATUSES = (PoolStatus.RESOLVED, PoolStatus.CLAIMABLE)
