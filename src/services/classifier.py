"""ThresholdClassifier service: annotate readings and raise alert events."""

from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

import structlog

from ..models import (
    AlertEvent,
    AlertSeverity,
    SensorReading,
    ThresholdRule,
    current_millis,
    default_rules,
)


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ClassificationResult:
    """Annotated reading plus the alerts raised while classifying it."""

    reading: SensorReading
    alerts: List[AlertEvent] = field(default_factory=list)

    @property
    def errors(self) -> List[AlertEvent]:
        return [alert for alert in self.alerts if alert.severity == AlertSeverity.ERROR]

    @property
    def warnings(self) -> List[AlertEvent]:
        return [alert for alert in self.alerts if alert.severity == AlertSeverity.WARNING]


class ThresholdClassifier:
    """Evaluate every threshold rule against a reading.

    Rules are independent: every matching rule fires, in table order, with no
    short-circuiting and no priority between overlapping conditions. All
    alerts raised for one reading share a single evaluation timestamp.
    """

    def __init__(self,
                 rules: Optional[Sequence[ThresholdRule]] = None,
                 clock: Callable[[], int] = current_millis):
        self.rules: List[ThresholdRule] = list(rules) if rules is not None else default_rules()
        self._clock = clock

    def classify(self, reading: SensorReading) -> ClassificationResult:
        """Annotate a reading and build its alert events."""
        evaluated_at = self._clock()
        warning = ""
        error = ""
        alerts: List[AlertEvent] = []

        for rule in self.rules:
            if not rule.matches(reading.channel_value(rule.channel)):
                continue

            if rule.severity == AlertSeverity.ERROR:
                error += f"{rule.label};"
            else:
                warning += f"{rule.label};"

            alerts.append(AlertEvent(
                message=rule.message,
                severity=rule.severity,
                timestamp=evaluated_at
            ))

        if alerts:
            logger.debug("Thresholds tripped",
                         voltage=reading.voltage,
                         current1=reading.current1,
                         warning=warning,
                         error=error)

        return ClassificationResult(
            reading=reading.with_annotations(warning=warning, error=error),
            alerts=alerts
        )

    def replace_rules(self, rules: Sequence[ThresholdRule]) -> None:
        """Swap the rule table, e.g. after a configuration reload."""
        self.rules = list(rules)
        logger.info("Threshold rules replaced", rule_count=len(self.rules))


__all__ = ["ThresholdClassifier", "ClassificationResult"]
