from sqlalchemy import Column, Float, Index, Integer, UniqueConstraint

from dowstats.db.base import Base
from dowstats.db.types import UTCDateTime
from dowstats.utils.weekday import Weekday


class WeekdayAggregate(Base):
    __tablename__ = "plugin_day_of_week"

    id           = Column(Integer, primary_key=True, autoincrement=True)
    point_id     = Column(Integer, nullable=False)
    day_of_week  = Column(Integer, nullable=False)  # 0=Monday .. 6=Sunday

    last_updated = Column(UTCDateTime, nullable=True)
    start_time   = Column(UTCDateTime, nullable=True)
    end_time     = Column(UTCDateTime, nullable=True)
    evals        = Column(Integer, nullable=False, default=0)

    # running statistics; null until the first sample is merged
    count        = Column(Integer, nullable=False, default=0)
    sum          = Column(Float, nullable=True)
    mean         = Column(Float, nullable=True)
    std_dev      = Column(Float, nullable=True)
    min          = Column(Float, nullable=True)
    max          = Column(Float, nullable=True)

    __table_args__ = (
        UniqueConstraint("point_id", "day_of_week", name="uq_plugin_day_of_week_point_day"),
        Index("ix_plugin_day_of_week_point", "point_id"),
    )

    @property
    def weekday(self) -> Weekday:
        return Weekday(self.day_of_week)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "point_id": self.point_id,
            "day_of_week": self.day_of_week,
            "weekday": self.weekday.name.lower(),
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
            "start": self.start_time.isoformat() if self.start_time else None,
            "end": self.end_time.isoformat() if self.end_time else None,
            "evaluations": self.evals,
            "count": self.count,
            "sum": self.sum,
            "mean": self.mean,
            "std_dev": self.std_dev,
            "min": self.min,
            "max": self.max,
        }

    def __repr__(self) -> str:
        return (
            f"WeekdayAggregate(id={self.id!r}, point_id={self.point_id!r}, "
            f"day_of_week={self.day_of_week!r}, count={self.count!r})"
        )
