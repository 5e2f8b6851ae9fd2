"""Log filters for default field injection."""

import logging


class DefaultCorrelationFilter(logging.Filter):
    """Adds default correlation_id if not present."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = "-"
        return True


class DefaultTripFilter(logging.Filter):
    """Adds default trip_id and meter_state so text formats never miss a field."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "trip_id"):
            record.trip_id = "-"
        if not hasattr(record, "meter_state"):
            record.meter_state = "-"
        return True
