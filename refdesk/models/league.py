"""
League tables the job pipeline reads from.

These are owned by the administration application; the workers only read
them, except for the two match-sheet delivery flags on Match.
"""

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    Float,
    ForeignKey,
    String,
)
from sqlalchemy.orm import relationship

from refdesk.db.base import Base
from refdesk.models.types import UUIDType


class Location(Base):
    __tablename__ = "locations"

    id = Column(UUIDType, primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    wilaya = Column(String, nullable=True)


class Team(Base):
    __tablename__ = "teams"

    id = Column(UUIDType, primary_key=True, default=uuid.uuid4)
    code = Column(String, nullable=False)
    name = Column(String, nullable=False)


class Stadium(Base):
    __tablename__ = "stadiums"

    id = Column(UUIDType, primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    location_id = Column(UUIDType, ForeignKey("locations.id"), nullable=True)

    location = relationship("Location")


class Official(Base):
    __tablename__ = "officials"

    id = Column(UUIDType, primary_key=True, default=uuid.uuid4)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    first_name_ar = Column(String, nullable=True)
    last_name_ar = Column(String, nullable=True)
    email = Column(String, nullable=True)
    category = Column(String, nullable=True)
    location_id = Column(UUIDType, ForeignKey("locations.id"), nullable=True)

    location = relationship("Location")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Match(Base):
    __tablename__ = "matches"

    id = Column(UUIDType, primary_key=True, default=uuid.uuid4)
    home_team_id = Column(UUIDType, ForeignKey("teams.id"), nullable=False)
    away_team_id = Column(UUIDType, ForeignKey("teams.id"), nullable=False)
    stadium_id = Column(UUIDType, ForeignKey("stadiums.id"), nullable=True)

    match_date = Column(Date, nullable=True)
    match_time = Column(String, nullable=True)
    game_day = Column(String, nullable=True)

    # SCHEDULED | COMPLETED | CANCELLED ...
    status = Column(String, nullable=False, default="SCHEDULED")
    # NOT_ENTERED | PENDING_VALIDATION | VALIDATED | REJECTED | CLOSED
    accounting_status = Column(String, nullable=False, default="NOT_ENTERED")
    is_archived = Column(Boolean, nullable=False, default=False)

    # Match-sheet delivery flags, written by the e-mail worker
    is_sheet_sent = Column(Boolean, nullable=False, default=False)
    has_unsent_changes = Column(Boolean, nullable=False, default=False)

    home_team = relationship("Team", foreign_keys=[home_team_id])
    away_team = relationship("Team", foreign_keys=[away_team_id])
    stadium = relationship("Stadium")
    assignments = relationship(
        "MatchAssignment", back_populates="match", order_by="MatchAssignment.role"
    )

    @property
    def description(self) -> str:
        return f"{self.home_team.name} vs {self.away_team.name}"


class MatchAssignment(Base):
    __tablename__ = "match_assignments"

    id = Column(UUIDType, primary_key=True, default=uuid.uuid4)
    match_id = Column(UUIDType, ForeignKey("matches.id"), nullable=False, index=True)
    official_id = Column(UUIDType, ForeignKey("officials.id"), nullable=True)

    # Arbitre Central | Assistant 1 | Assistant 2 | 4ème Arbitre | Délégué ...
    role = Column(String, nullable=False)

    travel_distance_km = Column(Float, nullable=True)
    indemnity_amount = Column(Float, nullable=True)
    irg_amount = Column(Float, nullable=True)
    is_confirmed = Column(Boolean, nullable=False, default=False)

    match = relationship("Match", back_populates="assignments")
    official = relationship("Official")
