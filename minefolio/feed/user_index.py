"""
Registered user index: which upstream identifiers belong to local players.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from minefolio import crud
from minefolio.records import PlayerProfile

logger = logging.getLogger("feed.user_index")


@dataclass
class RegisteredUserIndex:
    """Lowercase MCID -> profile of every user with a linked Minecraft account."""
    profiles: Dict[str, PlayerProfile] = field(default_factory=dict)

    def __contains__(self, identifier: str) -> bool:
        return identifier.lower() in self.profiles

    def __len__(self) -> int:
        return len(self.profiles)

    def get(self, identifier: str) -> Optional[PlayerProfile]:
        return self.profiles.get(identifier.lower())

    @property
    def identifiers(self) -> List[str]:
        return list(self.profiles)

    @property
    def mcids(self) -> List[str]:
        """MCIDs as registered (original casing)."""
        return [profile.mcid for profile in self.profiles.values()]

    def mcid_to_uuid(self) -> Dict[str, Optional[str]]:
        return {key: profile.uuid for key, profile in self.profiles.items()}

    def mcid_to_display_name(self) -> Dict[str, str]:
        return {
            key: profile.display_name or profile.mcid
            for key, profile in self.profiles.items()
        }


def build_registered_user_index(db: Session) -> RegisteredUserIndex:
    """Read the users table into a fresh index."""
    profiles = {}
    for user in crud.get_users_with_mcid(db):
        profiles[user.mcid.lower()] = PlayerProfile(
            mcid=user.mcid,
            uuid=user.uuid,
            slug=user.slug,
            display_name=user.display_name,
        )
    logger.debug(f"Built registered user index ({len(profiles)} players)")
    return RegisteredUserIndex(profiles=profiles)
