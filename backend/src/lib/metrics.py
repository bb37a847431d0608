"""
Prometheus-compatible metrics for the campaign engine.

Tracks:
- Campaign runs per tick outcome (fired, completed, rescheduled, paused, skipped)
- Campaign emails per dispatch status
- Funnel steps executed per step type
- Lead conversions per kind (student, contract)

Usage:
    from src.lib.metrics import get_metrics_collector

    metrics = get_metrics_collector()
    metrics.increment_campaign_runs(status="completed")
    metrics.increment_emails(status="sent", amount=120)

    # Export for Prometheus
    prometheus_output = metrics.export_prometheus()
"""

from typing import Dict, Tuple
from threading import Lock


class MetricsCollector:
    """
    Prometheus-style metrics collector.

    Counters:
    - campaign_runs_total: Per-campaign tick outcomes (labels: status)
    - campaign_emails_total: Email dispatch attempts (labels: status)
    - funnel_steps_run_total: Funnel steps executed (labels: type)
    - lead_conversions_total: Leads converted at Closed Won (labels: kind)

    Thread-safe for concurrent increments.
    """

    def __init__(self):
        self._lock = Lock()

        # Counters: key = (metric_name, labels_tuple), value = count
        self._counters: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], int] = {}

    def _get_counter_key(self, metric_name: str, labels: Dict[str, str]) -> Tuple[str, Tuple[Tuple[str, str], ...]]:
        """Generate unique key for counter with sorted labels."""
        sorted_labels = tuple(sorted(labels.items()))
        return (metric_name, sorted_labels)

    def _increment(self, metric_name: str, labels: Dict[str, str], amount: int = 1):
        """Thread-safe increment of counter."""
        key = self._get_counter_key(metric_name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + amount

    def _get_value(self, metric_name: str, labels: Dict[str, str]) -> int:
        key = self._get_counter_key(metric_name, labels)
        with self._lock:
            return self._counters.get(key, 0)

    # ===== Campaign Metrics =====

    def increment_campaign_runs(self, status: str, amount: int = 1):
        """
        Increment campaign tick outcome counter.

        Args:
            status: Outcome (fired, completed, rescheduled, paused, skipped)
            amount: Increment amount (default 1)
        """
        self._increment("campaign_runs_total", {"status": status.lower()}, amount)

    def increment_emails(self, status: str, amount: int = 1):
        """Increment campaign email counter (status: sent, failed, skipped)."""
        if amount <= 0:
            return
        self._increment("campaign_emails_total", {"status": status.lower()}, amount)

    def increment_funnel_steps(self, step_type: str, amount: int = 1):
        """Increment executed funnel steps."""
        self._increment("funnel_steps_run_total", {"type": step_type.lower()}, amount)

    # ===== Lead Metrics =====

    def increment_conversions(self, kind: str, amount: int = 1):
        """
        Increment lead conversions counter.

        Args:
            kind: student or contract
            amount: Increment amount
        """
        self._increment("lead_conversions_total", {"kind": kind.lower()}, amount)

    # ===== Export =====

    def export_prometheus(self) -> str:
        """
        Export all metrics in Prometheus text format.

        Returns:
            Prometheus-compatible text output
        """
        output_lines = []

        # Group counters by metric name
        metrics_by_name: Dict[str, list] = {}
        with self._lock:
            for (metric_name, labels_tuple), value in self._counters.items():
                metrics_by_name.setdefault(metric_name, []).append((dict(labels_tuple), value))

        for metric_name in sorted(metrics_by_name.keys()):
            help_text = self._get_help_text(metric_name)
            output_lines.append(f"# HELP {metric_name} {help_text}")
            output_lines.append(f"# TYPE {metric_name} counter")

            for labels_dict, value in sorted(metrics_by_name[metric_name], key=lambda x: str(x[0])):
                labels_str = ",".join([f'{k}="{v}"' for k, v in sorted(labels_dict.items())])
                output_lines.append(f"{metric_name}{{{labels_str}}} {value}")

            output_lines.append("")  # Blank line between metrics

        return "\n".join(output_lines)

    def _get_help_text(self, metric_name: str) -> str:
        help_texts = {
            "campaign_runs_total": "Campaign outcomes recorded by the scheduler tick",
            "campaign_emails_total": "Campaign email dispatch attempts",
            "funnel_steps_run_total": "Funnel steps executed",
            "lead_conversions_total": "Leads converted into students or contracts",
        }
        return help_texts.get(metric_name, "Counter metric")

    def get_counter_value(self, metric_name: str, labels: Dict[str, str]) -> int:
        """
        Get current value of a specific counter.

        Args:
            metric_name: Name of the metric
            labels: Label filters

        Returns:
            Current counter value
        """
        return self._get_value(metric_name, labels)

    def reset_all(self):
        """Reset all counters (for testing)."""
        with self._lock:
            self._counters.clear()


# Global singleton instance
_metrics_collector: MetricsCollector | None = None
_metrics_lock = Lock()


def get_metrics_collector() -> MetricsCollector:
    """
    Get global metrics collector singleton.

    Returns:
        MetricsCollector instance
    """
    global _metrics_collector
    if _metrics_collector is None:
        with _metrics_lock:
            if _metrics_collector is None:
                _metrics_collector = MetricsCollector()
    return _metrics_collector


def reset_metrics():
    """Reset global metrics collector (for testing)."""
    global _metrics_collector
    with _metrics_lock:
        if _metrics_collector is not None:
            _metrics_collector.reset_all()
