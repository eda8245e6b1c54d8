from .weekday_aggregate import WeekdayAggregate


__all__ = ["WeekdayAggregate"]
