"""State resetters: restore a resource's data to its post-schema baseline."""

from .mongo_resetter import MongoStateResetter
from .policy import ResetPlan, ResetPolicy, ResetStrategy
from .redis_resetter import RedisStateResetter
from .sqlalchemy_resetter import SqlAlchemyStateResetter

__all__ = [
    "MongoStateResetter",
    "RedisStateResetter",
    "ResetPlan",
    "ResetPolicy",
    "ResetStrategy",
    "SqlAlchemyStateResetter",
]
