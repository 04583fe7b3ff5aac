import structlog
import logging
import sys
from typing import Dict, Any, Optional
from datetime import datetime, timezone

from infrastructure.config import get_config


def setup_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    service_name: Optional[str] = None
) -> None:
    """Setup structured logging configuration"""

    config = get_config()
    log_level = log_level or config.log_level
    log_format = log_format or config.log_format
    service_name = service_name or config.service_name

    # Configure Python logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO)
    )

    # Processors for structlog
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        add_service_context,
    ]

    # Add appropriate renderer based on format
    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    # Configure structlog
    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Set service name in context
    structlog.contextvars.bind_contextvars(service=service_name)


def add_service_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add service context to all log entries"""

    # Add timestamp if not present
    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()

    # Add generation ID if available (from context)
    generation_id = structlog.contextvars.get_contextvars().get("generation_id")
    if generation_id and "generation_id" not in event_dict:
        event_dict["generation_id"] = generation_id

    return event_dict


class WorldInfoLogger:
    """Specialized logger for activation runs"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def log_pass(
        self,
        generation_id: str,
        pass_index: int,
        scan_state: str,
        activated: int,
        **kwargs
    ):
        """Log the outcome of one scan pass"""

        self.logger.debug(
            "scan_pass",
            generation_id=generation_id,
            pass_index=pass_index,
            scan_state=scan_state,
            activated=activated,
            **kwargs
        )

    def log_entry_activation(
        self,
        generation_id: str,
        book: str,
        entry_id: Any,
        pass_index: int,
        scan_depth: int
    ):
        """Log an entry becoming a candidate"""

        self.logger.debug(
            "entry_activated",
            generation_id=generation_id,
            book=book,
            entry_id=entry_id,
            pass_index=pass_index,
            scan_depth=scan_depth
        )

    def log_budget_decision(
        self,
        generation_id: str,
        book: str,
        entry_id: Any,
        tokens: int,
        used: int,
        ceiling: int,
        admitted: bool,
        reason: Optional[str] = None
    ):
        """Log whether an entry made it into the budget"""

        self.logger.debug(
            "budget_decision",
            generation_id=generation_id,
            book=book,
            entry_id=entry_id,
            tokens=tokens,
            used=used,
            ceiling=ceiling,
            admitted=admitted,
            reason=reason
        )

    def log_processing_summary(
        self,
        generation_id: str,
        summary: Dict[str, Any],
        duration_ms: Optional[float] = None
    ):
        """Log the final result of a run"""

        self.logger.info(
            "world_info_processed",
            generation_id=generation_id,
            duration_ms=duration_ms,
            **summary
        )


# Global logger instance
world_info_logger = WorldInfoLogger("world_info")


class MetricsCollector:
    """Collect and export metrics"""

    def __init__(self):
        self.metrics: Dict[str, Any] = {}

    def record_latency(self, operation: str, duration_ms: float, tags: Optional[Dict[str, str]] = None):
        """Record operation latency"""

        key = f"latency.{operation}"
        if key not in self.metrics:
            self.metrics[key] = {
                "count": 0,
                "sum": 0,
                "min": float('inf'),
                "max": 0
            }

        self.metrics[key]["count"] += 1
        self.metrics[key]["sum"] += duration_ms
        self.metrics[key]["min"] = min(self.metrics[key]["min"], duration_ms)
        self.metrics[key]["max"] = max(self.metrics[key]["max"], duration_ms)

        world_info_logger.logger.debug(
            "metric",
            metric_type="latency",
            operation=operation,
            duration_ms=duration_ms,
            tags=tags or {}
        )

    def increment_counter(self, name: str, value: int = 1, tags: Optional[Dict[str, str]] = None):
        """Increment a counter metric"""

        if name not in self.metrics:
            self.metrics[name] = 0
        self.metrics[name] += value

        world_info_logger.logger.debug(
            "metric",
            metric_type="counter",
            name=name,
            value=value,
            tags=tags or {}
        )

    def get_metrics_summary(self) -> Dict[str, Any]:
        """Get summary of all metrics"""

        summary = {}
        for key, value in self.metrics.items():
            if isinstance(value, dict) and "count" in value:
                # Latency metric
                summary[key] = {
                    "count": value["count"],
                    "avg": value["sum"] / value["count"] if value["count"] > 0 else 0,
                    "min": value["min"] if value["min"] != float('inf') else 0,
                    "max": value["max"]
                }
            else:
                # Counter
                summary[key] = value

        return summary


# Global metrics collector
metrics = MetricsCollector()
