"""
Upstream adapters: one class per external API, normalizing into records.

Adapters never cache; the aggregator decides what is cached and for how long.
"""
from .http import UpstreamClient
from .paceman import PaceManClient, filter_registered, latest_split, split_label, split_order
from .twitch import AppToken, TwitchClient
from .youtube import YouTubeClient

__all__ = [
    "UpstreamClient",
    "PaceManClient",
    "filter_registered",
    "latest_split",
    "split_label",
    "split_order",
    "AppToken",
    "TwitchClient",
    "YouTubeClient",
]
