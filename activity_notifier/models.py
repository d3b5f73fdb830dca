from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text, UniqueConstraint

from .database import Base


class ActivityRow(Base):
    __tablename__ = "actividades"
    id = Column(String, primary_key=True)
    title = Column(String, nullable=True)
    date = Column(DateTime, nullable=True)
    region_id = Column(Integer, index=True, nullable=True)
    comuna_id = Column(Integer, index=True, nullable=True)
    sport_id = Column(String, nullable=True)
    place_name = Column(String, nullable=True)
    formatted_address = Column(Text, nullable=True)
    creator_id = Column(String, nullable=True)


class SportRow(Base):
    __tablename__ = "deportes"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)


class LocationPreferenceRow(Base):
    __tablename__ = "user_preferred_locations"
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, index=True, nullable=False)
    region_id = Column(Integer, index=True, nullable=True)
    comuna_id = Column(Integer, index=True, nullable=True)


class ProfileRow(Base):
    __tablename__ = "perfil"
    id = Column(String, primary_key=True)
    fcm_token = Column(String, nullable=True)
    preferred_sport_ids = Column(JSON, nullable=True)  # list of sport ids
    notify_new_activity = Column(Boolean, default=True, nullable=False)


class AlertRow(Base):
    __tablename__ = "alerts"
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String, index=True, nullable=False)
    activity_id = Column(String, index=True, nullable=False)
    activity_title = Column(String, default="", nullable=False)
    activity_date = Column(DateTime, nullable=True)
    place_name = Column(String, nullable=True)
    formatted_address = Column(Text, nullable=True)
    sport_name = Column(String, nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    __table_args__ = (UniqueConstraint('user_id', 'activity_id', name='uq_alert_user_activity'),)
