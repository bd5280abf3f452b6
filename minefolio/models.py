"""
Database models for the Minefolio feed layer
SQLAlchemy ORM models for the user store (read-only here) and the
persistent cache tables populated by the refresh jobs.
"""
from sqlalchemy import (
    Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
)
from sqlalchemy.orm import declarative_base, relationship

from minefolio.utils.helpers import utcnow

Base = declarative_base()


class User(Base):
    """
    Registered profile - owned by the profile application.
    The feed layer only reads mcid/uuid/display fields to correlate
    external records with local players.
    """
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    mcid = Column(String, unique=True, nullable=True, index=True)
    uuid = Column(String, unique=True, nullable=True, index=True)
    slug = Column(String, unique=True, nullable=False)
    display_name = Column(String, nullable=True)
    profile_visibility = Column(String, nullable=False, default="public")  # public/unlisted/private
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    social_links = relationship("SocialLink", back_populates="user")

    def __repr__(self):
        return f"<User(id='{self.id}', mcid='{self.mcid}')>"


class SocialLink(Base):
    """
    External account attached to a profile (twitch login, youtube channel id or handle)
    """
    __tablename__ = "social_links"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    platform = Column(String, nullable=False, index=True)  # speedruncom/youtube/twitch/twitter
    identifier = Column(String, nullable=False)
    display_order = Column(Integer, nullable=False, default=0)

    # Relationships
    user = relationship("User", back_populates="social_links")

    def __repr__(self):
        return f"<SocialLink(platform='{self.platform}', identifier='{self.identifier}')>"


class ApiCache(Base):
    """
    Persistent cache tier - one row per cache key, JSON payload
    """
    __tablename__ = "api_cache"

    cache_key = Column(String, primary_key=True)
    cache_type = Column(String, nullable=False, index=True)
    data = Column(Text, nullable=False)
    stored_at = Column(Float, nullable=False)  # epoch seconds
    expires_at = Column(Float, nullable=False, index=True)  # epoch seconds
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<ApiCache(cache_key='{self.cache_key}', expires_at={self.expires_at})>"


class PacemanPace(Base):
    """
    Weekly pace history - one record per PaceMan run per player
    """
    __tablename__ = "paceman_paces"

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(Integer, nullable=False)
    mcid = Column(String, nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=True)
    timeline = Column(String, nullable=False)  # furthest split reached, e.g. "rsg.enter_end"
    igt = Column(Integer, nullable=True)  # ms
    date = Column(DateTime, nullable=False, index=True)
    is_nether_enter = Column(Boolean, nullable=False, default=False)
    is_2nd_structure_or_later = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)

    # Constraints - a run is stored once per player
    __table_args__ = (
        UniqueConstraint("run_id", "mcid", name="uix_pace_run_mcid"),
    )

    def __repr__(self):
        return f"<PacemanPace(mcid='{self.mcid}', run_id={self.run_id}, timeline='{self.timeline}')>"


class YoutubeVideoCache(Base):
    """
    Recent uploads from registered channels, refreshed by the youtube-update job
    """
    __tablename__ = "youtube_video_cache"

    id = Column(Integer, primary_key=True, autoincrement=True)
    video_id = Column(String, unique=True, nullable=False, index=True)
    channel_id = Column(String, nullable=False, index=True)
    mcid = Column(String, nullable=True, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    thumbnail_url = Column(String, nullable=True)
    channel_title = Column(String, nullable=True)
    published_at = Column(DateTime, nullable=False, index=True)
    last_verified_at = Column(DateTime, nullable=False, default=utcnow)
    is_available = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<YoutubeVideoCache(video_id='{self.video_id}', available={self.is_available})>"


class YoutubeLiveCache(Base):
    """
    Live and upcoming broadcasts, refreshed by the youtube-live job
    """
    __tablename__ = "youtube_live_cache"

    id = Column(Integer, primary_key=True, autoincrement=True)
    video_id = Column(String, unique=True, nullable=False, index=True)
    channel_id = Column(String, nullable=False, index=True)
    mcid = Column(String, nullable=True, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    thumbnail_url = Column(String, nullable=True)
    channel_title = Column(String, nullable=True)
    live_broadcast_content = Column(String, nullable=False, index=True)  # live/upcoming/none
    scheduled_start_time = Column(DateTime, nullable=True)
    actual_start_time = Column(DateTime, nullable=True)
    concurrent_viewers = Column(Integer, nullable=True)
    last_checked_at = Column(DateTime, nullable=False, default=utcnow)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<YoutubeLiveCache(video_id='{self.video_id}', status='{self.live_broadcast_content}')>"
