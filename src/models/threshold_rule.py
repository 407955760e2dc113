"""ThresholdRule data model and the default mains/load rule table."""

import math
from enum import Enum
from typing import List

from pydantic import BaseModel, Field, field_validator

from .alert_event import AlertSeverity


class SensorChannel(str, Enum):
    """Measured channels carried by every reading, in wire order."""

    VOLTAGE = "voltage"
    CURRENT1 = "current1"
    CURRENT2 = "current2"
    CURRENT3 = "current3"
    TEMPERATURE = "temperature"
    HUMIDITY = "humidity"


class ComparisonOperator(str, Enum):
    """Comparison applied between a channel value and a rule threshold."""

    LESS_THAN = "<"
    GREATER_THAN = ">"
    EQUAL = "=="


class ThresholdRule(BaseModel):
    """One named numeric boundary on a single channel."""

    model_config = {
        "frozen": True,
        "extra": "forbid",
        "use_enum_values": True
    }

    name: str = Field(min_length=1, max_length=64, description="Unique rule identifier")
    channel: SensorChannel = Field(description="Channel the rule inspects")
    operator: ComparisonOperator = Field(description="Comparison against the threshold")
    threshold: float = Field(description="Boundary value")
    severity: AlertSeverity = Field(description="Severity of the raised alert")
    label: str = Field(min_length=1, max_length=100, description="Annotation label on the reading")
    message: str = Field(min_length=1, max_length=200, description="Alert message text")

    @field_validator('threshold')
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        """Thresholds must be finite numbers."""
        if math.isnan(v) or math.isinf(v):
            raise ValueError("threshold must be a finite number")
        return v

    @field_validator('label')
    @classmethod
    def validate_label(cls, v: str) -> str:
        """Labels are joined with ';' so they cannot contain one."""
        v = v.strip()
        if ";" in v:
            raise ValueError("label cannot contain ';'")
        return v

    def matches(self, value: float) -> bool:
        """Check whether a channel value trips this rule.

        NaN compares false against everything, so a reading with an
        undecodable field never trips a rule on that field.
        """
        if self.operator == ComparisonOperator.LESS_THAN:
            return value < self.threshold
        if self.operator == ComparisonOperator.GREATER_THAN:
            return value > self.threshold
        return value == self.threshold

    def describe(self) -> str:
        """Short human-readable form, e.g. ``voltage < 120``."""
        return f"{self.channel} {self.operator} {self.threshold:g}"


def _rule(name: str, channel: SensorChannel, operator: ComparisonOperator,
          threshold: float, severity: AlertSeverity, label: str, message: str) -> ThresholdRule:
    return ThresholdRule(
        name=name,
        channel=channel,
        operator=operator,
        threshold=threshold,
        severity=severity,
        label=label,
        message=message
    )


_LT = ComparisonOperator.LESS_THAN
_GT = ComparisonOperator.GREATER_THAN
_EQ = ComparisonOperator.EQUAL
_WARNING = AlertSeverity.WARNING
_ERROR = AlertSeverity.ERROR

# Evaluation order matters: it is the order labels appear in the annotations.
DEFAULT_RULES: List[ThresholdRule] = [
    _rule("low_ac_warning", SensorChannel.VOLTAGE, _LT, 120, _WARNING,
          "Low AC voltage", "Low AC voltage warning"),
    _rule("high_ac_warning", SensorChannel.VOLTAGE, _GT, 200, _WARNING,
          "High AC voltage", "High AC voltage warning"),
    _rule("high_dc_warning", SensorChannel.VOLTAGE, _GT, 54, _WARNING,
          "High DC voltage", "High DC voltage warning"),
    _rule("low_dc_error", SensorChannel.VOLTAGE, _LT, 40, _ERROR,
          "Low DC voltage", "Low DC voltage error"),
    _rule("high_ac_error", SensorChannel.VOLTAGE, _GT, 240, _ERROR,
          "High AC voltage", "High AC voltage error"),
    _rule("low_dc_error_secondary", SensorChannel.VOLTAGE, _LT, 46, _ERROR,
          "Low DC voltage (46V)", "Low DC voltage error (46V)"),
    _rule("high_dc_error", SensorChannel.VOLTAGE, _GT, 60, _ERROR,
          "High DC voltage", "High DC voltage error"),
    _rule("mains_failure", SensorChannel.VOLTAGE, _EQ, 0, _ERROR,
          "Mains failure", "Mains failure"),
    _rule("low_ac_error", SensorChannel.VOLTAGE, _LT, 110, _ERROR,
          "Low AC voltage", "Low AC voltage error"),
    _rule("critical_load", SensorChannel.CURRENT1, _GT, 70, _WARNING,
          "Critical load", "Critical load condition (overload)"),
]


def default_rules() -> List[ThresholdRule]:
    """Return a fresh copy of the default rule table."""
    return list(DEFAULT_RULES)
