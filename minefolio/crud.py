"""
CRUD operations (read side of the user store)
Queries the feed layer needs to correlate upstream records with local profiles.
"""
from typing import List, Tuple

from sqlalchemy.orm import Session

from minefolio.models import SocialLink, User


# ===== USERS =====

def get_users_with_mcid(db: Session) -> List[User]:
    """
    Get every user that has linked a Minecraft account
    """
    return db.query(User).filter(User.mcid.isnot(None)).all()


def get_user_ids_by_mcid(db: Session, mcids: List[str]) -> dict:
    """
    Map lowercase MCID -> user id for the given MCIDs (case-insensitive)
    """
    if not mcids:
        return {}
    wanted = {m.lower() for m in mcids}
    rows = db.query(User.id, User.mcid).filter(User.mcid.isnot(None)).all()
    return {mcid.lower(): user_id for user_id, mcid in rows if mcid.lower() in wanted}


# ===== SOCIAL LINKS =====

def get_public_social_links(db: Session, platform: str) -> List[Tuple[str, str]]:
    """
    Get (identifier, mcid) pairs for a platform, restricted to public profiles
    """
    rows = (
        db.query(SocialLink.identifier, User.mcid)
        .join(User, SocialLink.user_id == User.id)
        .filter(
            User.profile_visibility == "public",
            SocialLink.platform == platform,
            User.mcid.isnot(None),
        )
        .order_by(SocialLink.display_order)
        .all()
    )
    return [(identifier, mcid) for identifier, mcid in rows]
