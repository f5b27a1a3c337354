"""Bootstrap replication for Mixboot."""

from . import bootstrap, streams
from .bootstrap import parametricbootstrap

__all__ = ["bootstrap", "streams", "parametricbootstrap"]
