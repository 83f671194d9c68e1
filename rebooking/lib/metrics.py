"""
Prometheus-compatible metrics for the rebooking engine.

Tracks:
- Suggestions generated, skipped (by reason), shown, dismissed, expired
- Rebook commits (by source and outcome)
- Preference profile updates

Usage:
    from rebooking.lib.metrics import get_metrics_collector

    metrics = get_metrics_collector()
    metrics.increment_commits(source="express_rebook", outcome="confirmed")

    # Export for Prometheus
    prometheus_output = metrics.export_prometheus()
"""

from typing import Dict, Tuple
from threading import Lock


class MetricsCollector:
    """
    Prometheus-style counter collector.

    Counters are keyed by (metric name, sorted label pairs).
    Thread-safe for concurrent increments.
    """

    HELP_TEXTS = {
        "rebook_suggestions_generated_total": "Rebooking suggestions created by the daily sweep",
        "rebook_suggestions_skipped_total": "Profiles skipped by the daily sweep",
        "rebook_suggestions_shown_total": "Suggestions moved from pending to shown",
        "rebook_suggestions_dismissed_total": "Suggestions dismissed by customers",
        "rebook_suggestions_expired_total": "Suggestions retired by the expiry sweep",
        "rebook_commits_total": "Rebooking commit attempts by source and outcome",
        "rebook_preference_updates_total": "Preference profiles created or updated",
    }

    def __init__(self):
        self._lock = Lock()
        self._counters: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], int] = {}

    def _get_counter_key(self, metric_name: str, labels: Dict[str, str]) -> Tuple[str, Tuple[Tuple[str, str], ...]]:
        return (metric_name, tuple(sorted(labels.items())))

    def _increment(self, metric_name: str, labels: Dict[str, str], amount: int = 1):
        key = self._get_counter_key(metric_name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + amount

    # ===== Suggestion lifecycle =====

    def increment_generated(self, amount: int = 1):
        self._increment("rebook_suggestions_generated_total", {}, amount)

    def increment_skipped(self, reason: str, amount: int = 1):
        """
        Count a profile the daily sweep passed over.

        Args:
            reason: active_suggestion, missing_history, not_due, no_slot, error
        """
        self._increment("rebook_suggestions_skipped_total", {"reason": reason.lower()}, amount)

    def increment_shown(self, amount: int = 1):
        self._increment("rebook_suggestions_shown_total", {}, amount)

    def increment_dismissed(self, amount: int = 1):
        self._increment("rebook_suggestions_dismissed_total", {}, amount)

    def increment_expired(self, amount: int = 1):
        self._increment("rebook_suggestions_expired_total", {}, amount)

    # ===== Commits =====

    def increment_commits(self, source: str, outcome: str, amount: int = 1):
        """
        Count a commit attempt.

        Args:
            source: express_rebook or express_rebook_custom
            outcome: confirmed, or the error code that stopped it
        """
        labels = {"source": source.lower(), "outcome": outcome.lower()}
        self._increment("rebook_commits_total", labels, amount)

    def increment_preference_updates(self, created: bool, amount: int = 1):
        labels = {"operation": "created" if created else "updated"}
        self._increment("rebook_preference_updates_total", labels, amount)

    # ===== Export =====

    def export_prometheus(self) -> str:
        """Export all counters in Prometheus text format."""
        output_lines = []

        metrics_by_name: Dict[str, list] = {}
        with self._lock:
            for (metric_name, labels_tuple), value in self._counters.items():
                metrics_by_name.setdefault(metric_name, []).append((dict(labels_tuple), value))

        for metric_name in sorted(metrics_by_name.keys()):
            help_text = self.HELP_TEXTS.get(metric_name, "Counter metric")
            output_lines.append(f"# HELP {metric_name} {help_text}")
            output_lines.append(f"# TYPE {metric_name} counter")

            for labels_dict, value in sorted(metrics_by_name[metric_name], key=lambda x: str(x[0])):
                if labels_dict:
                    labels_str = ",".join(f'{k}="{v}"' for k, v in sorted(labels_dict.items()))
                    output_lines.append(f"{metric_name}{{{labels_str}}} {value}")
                else:
                    output_lines.append(f"{metric_name} {value}")

            output_lines.append("")

        return "\n".join(output_lines)

    def get_counter_value(self, metric_name: str, labels: Dict[str, str] | None = None) -> int:
        key = self._get_counter_key(metric_name, labels or {})
        with self._lock:
            return self._counters.get(key, 0)

    def reset_all(self):
        """Reset all counters (for testing)."""
        with self._lock:
            self._counters.clear()


# Global singleton instance
_metrics_collector: MetricsCollector | None = None
_metrics_lock = Lock()


def get_metrics_collector() -> MetricsCollector:
    """Get global metrics collector singleton."""
    global _metrics_collector
    if _metrics_collector is None:
        with _metrics_lock:
            if _metrics_collector is None:
                _metrics_collector = MetricsCollector()
    return _metrics_collector


def reset_metrics():
    """Reset global metrics collector (for testing)."""
    with _metrics_lock:
        if _metrics_collector is not None:
            _metrics_collector.reset_all()
