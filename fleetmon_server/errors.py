class FleetMonitorError(Exception):
    """Base class for every error raised by the monitoring core."""


class ConfigurationError(FleetMonitorError):
    pass


class StorageError(FleetMonitorError):
    """The store failed or refused a write; the transaction was rolled back."""


class DuplicateWarningError(FleetMonitorError):
    def __init__(self, measurement_id, warning_type):
        super().__init__(
            f"warning {warning_type!r} already recorded for measurement {measurement_id}"
        )
        self.measurement_id = measurement_id
        self.warning_type = warning_type


class AggregationError(FleetMonitorError):
    pass


class IngestionError(FleetMonitorError):
    """Single error surfaced by the ingestion gateway. Nothing was written."""


class ValidationError(IngestionError):
    def __init__(self, field, message):
        super().__init__(f"{field}: {message}")
        self.field = field
