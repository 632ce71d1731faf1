# Package initialization
# Import all models to ensure relationships are properly established
from .doctor import Doctor
from .payer_rate import PayerRate
from .additional_config import AdditionalConfig
from .doctor_group_config import DoctorGroupConfig
from .hourly_rate_config import HourlyRateConfig
from .settlement_batch import SettlementBatch
from .line_item import LineItem, HoursLineItem
from .processing_log import ProcessingLog

__all__ = [
    "Doctor",
    "PayerRate",
    "AdditionalConfig",
    "DoctorGroupConfig",
    "HourlyRateConfig",
    "SettlementBatch",
    "LineItem",
    "HoursLineItem",
    "ProcessingLog",
]
