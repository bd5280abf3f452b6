"""
Twitch Helix adapter (app access token + live stream lookup).
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import requests

from config.settings import settings
from minefolio.errors import UpstreamError
from minefolio.records import StreamRecord
from .http import UpstreamClient

logger = logging.getLogger("sources.twitch")

# Helix accepts at most 100 user_login values per /streams call
STREAMS_BATCH_SIZE = 100

# Size the feed cards render stream previews at
THUMBNAIL_WIDTH = 440
THUMBNAIL_HEIGHT = 248


@dataclass
class AppToken:
    access_token: str
    expires_in: int = 0  # seconds


def thumbnail_url(template: str, width: int, height: int) -> str:
    """Fill the {width}/{height} placeholders of a Helix thumbnail template."""
    return template.replace("{width}", str(width)).replace("{height}", str(height))


class TwitchClient:
    """Client for the Twitch Helix API using the client credentials flow."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        base_url: Optional[str] = None,
        auth_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        self.client_id = client_id
        self._client_secret = client_secret
        self._auth_url = auth_url or settings.twitch_auth_url
        self._http = UpstreamClient(
            "twitch",
            base_url or settings.twitch_api_base_url,
            session=session,
        )

    def get_app_token(self) -> AppToken:
        """Request an app access token."""
        data = self._http.post_json(
            self._auth_url,
            params={
                "client_id": self.client_id,
                "client_secret": self._client_secret,
                "grant_type": "client_credentials",
            },
        )
        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            raise UpstreamError("twitch", "token response had no access_token")
        return AppToken(access_token=token, expires_in=int(data.get("expires_in") or 0))

    def get_live_streams(self, access_token: str, user_logins: List[str]) -> List[StreamRecord]:
        """
        Streams that are live right now for the given logins.

        Offline channels are simply absent from the result.
        """
        if not user_logins:
            return []

        headers = self._auth_headers(access_token)
        streams: List[StreamRecord] = []
        for start in range(0, len(user_logins), STREAMS_BATCH_SIZE):
            batch = user_logins[start:start + STREAMS_BATCH_SIZE]
            data = self._http.get_json(
                "streams",
                params={"user_login": batch, "first": STREAMS_BATCH_SIZE},
                headers=headers,
            )
            if not isinstance(data, dict):
                raise UpstreamError("twitch", "streams response was not an object")
            for raw in data.get("data") or []:
                if raw.get("type") == "live":
                    stream = StreamRecord.from_twitch(raw)
                    stream.thumbnail_url = thumbnail_url(stream.thumbnail_url, THUMBNAIL_WIDTH, THUMBNAIL_HEIGHT)
                    streams.append(stream)

        logger.debug(f"Twitch: {len(streams)} live of {len(user_logins)} channels")
        return streams

    def _auth_headers(self, access_token: str) -> Dict[str, str]:
        return {
            "Client-ID": self.client_id,
            "Authorization": f"Bearer {access_token}",
        }
