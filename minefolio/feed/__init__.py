"""
Feed aggregation over the cache and the upstream adapters.
"""
from .user_index import RegisteredUserIndex, build_registered_user_index
from .channels import ChannelDirectory
from .aggregator import FeedAggregator, FeedResult

__all__ = [
    "RegisteredUserIndex",
    "build_registered_user_index",
    "ChannelDirectory",
    "FeedAggregator",
    "FeedResult",
]
