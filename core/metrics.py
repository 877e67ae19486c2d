# core/metrics.py: in-process metrics and security audit events for access control

import time
import threading
import logging
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field
from contextlib import contextmanager

@dataclass
class MetricCounter:
    """A counter metric that can only increase."""
    name: str
    value: int = 0
    labels: Dict[str, str] = field(default_factory=dict)
    last_updated: float = field(default_factory=time.time)

@dataclass
class MetricHistogram:
    """A histogram metric for tracking distributions."""
    name: str
    buckets: List[float] = field(default_factory=lambda: [0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 25.0, 50.0, 100.0, 250.0, 500.0, 1000.0])
    counts: List[int] = field(default_factory=lambda: [0] * 12)
    sum: float = 0.0
    count: int = 0
    labels: Dict[str, str] = field(default_factory=dict)
    last_updated: float = field(default_factory=time.time)

class MetricsCollector:
    """Thread-safe metrics collector."""

    def __init__(self):
        self._lock = threading.RLock()
        self._counters: Dict[str, MetricCounter] = {}
        self._histograms: Dict[str, MetricHistogram] = {}
        self._start_time = time.time()

    def _get_metric_key(self, name: str, labels: Dict[str, str] = None) -> str:
        """Generate a unique key for a metric with labels."""
        if not labels:
            return name
        sorted_labels = sorted(labels.items())
        label_str = ",".join(f"{k}={v}" for k, v in sorted_labels)
        return f"{name}{{{label_str}}}"

    def increment_counter(self, name: str, value: int = 1, labels: Dict[str, str] = None):
        """Increment a counter metric."""
        with self._lock:
            key = self._get_metric_key(name, labels)
            if key not in self._counters:
                self._counters[key] = MetricCounter(name=name, labels=labels or {})
            self._counters[key].value += value
            self._counters[key].last_updated = time.time()

    def observe_histogram(self, name: str, value: float, labels: Dict[str, str] = None):
        """Observe a value in a histogram metric."""
        with self._lock:
            key = self._get_metric_key(name, labels)
            if key not in self._histograms:
                self._histograms[key] = MetricHistogram(name=name, labels=labels or {})

            histogram = self._histograms[key]
            histogram.sum += value
            histogram.count += 1
            histogram.last_updated = time.time()

            for i, bucket in enumerate(histogram.buckets):
                if value <= bucket:
                    histogram.counts[i] += 1
                    break
            else:
                # Value exceeds all buckets, increment the last one
                histogram.counts[-1] += 1

    def get_counter(self, name: str, labels: Dict[str, str] = None) -> int:
        """Get the current value of a counter."""
        with self._lock:
            key = self._get_metric_key(name, labels)
            return self._counters.get(key, MetricCounter(name=name, labels=labels or {})).value

    def get_histogram_stats(self, name: str, labels: Dict[str, str] = None) -> Dict[str, Any]:
        """Get histogram statistics."""
        with self._lock:
            key = self._get_metric_key(name, labels)
            histogram = self._histograms.get(key, MetricHistogram(name=name, labels=labels or {}))

            return {
                "count": histogram.count,
                "sum": histogram.sum,
                "avg": histogram.sum / histogram.count if histogram.count else 0.0,
                "buckets": dict(zip(histogram.buckets, histogram.counts))
            }

    def get_all_metrics(self) -> Dict[str, Any]:
        """Get all metrics in a structured format."""
        with self._lock:
            metrics = {
                "counters": {},
                "histograms": {},
                "uptime_seconds": time.time() - self._start_time,
                "timestamp": time.time()
            }

            for counter in self._counters.values():
                metrics["counters"].setdefault(counter.name, []).append({
                    "value": counter.value,
                    "labels": counter.labels,
                    "last_updated": counter.last_updated
                })

            for histogram in self._histograms.values():
                metrics["histograms"].setdefault(histogram.name, []).append({
                    "stats": self.get_histogram_stats(histogram.name, histogram.labels),
                    "labels": histogram.labels,
                    "last_updated": histogram.last_updated
                })

            return metrics

    def reset_metrics(self):
        """Reset all metrics to zero."""
        with self._lock:
            self._counters.clear()
            self._histograms.clear()
            self._start_time = time.time()

# Global metrics collector instance
_metrics = MetricsCollector()

# Set up audit logger for RBAC
audit_logger = logging.getLogger("rbac.audit")

# Convenience functions for easy access
def increment_counter(name: str, value: int = 1, labels: Dict[str, str] = None):
    """Increment a counter metric."""
    _metrics.increment_counter(name, value, labels)

def observe_histogram(name: str, value: float, labels: Dict[str, str] = None):
    """Observe a value in a histogram metric."""
    _metrics.observe_histogram(name, value, labels)

def get_counter(name: str, labels: Dict[str, str] = None) -> int:
    """Get the current value of a counter."""
    return _metrics.get_counter(name, labels)

def get_histogram_stats(name: str, labels: Dict[str, str] = None) -> Dict[str, Any]:
    """Get histogram statistics."""
    return _metrics.get_histogram_stats(name, labels)

def get_all_metrics() -> Dict[str, Any]:
    """Get all metrics in a structured format."""
    return _metrics.get_all_metrics()

def reset_metrics():
    """Reset all metrics to zero."""
    _metrics.reset_metrics()

@contextmanager
def time_operation(operation_name: str, labels: Dict[str, str] = None):
    """Context manager to time an operation and record it as a histogram."""
    start_time = time.time()
    try:
        yield
    finally:
        duration_ms = (time.time() - start_time) * 1000
        observe_histogram(f"{operation_name}_latency_ms", duration_ms, labels)


# ============================================================================
# RBAC-Specific Metrics and Auditing
# ============================================================================

def record_permission_check(allowed: bool, permission: str, role: Optional[str]):
    """
    Record a permission evaluation.

    Args:
        allowed: Whether access was granted
        permission: Permission being checked
        role: Resolved role, None if the principal could not be resolved
    """
    if allowed:
        increment_counter("rbac.allowed")
        increment_counter("rbac.allowed.by_permission", labels={"permission": permission})
    else:
        increment_counter("rbac.denied")
        increment_counter("rbac.denied.by_permission", labels={"permission": permission})
    increment_counter("rbac.role_distribution", labels={"role": role or "unresolved"})


def record_route_decision(decision: str, pattern: Optional[str] = None):
    """
    Record a route guard outcome.

    Args:
        decision: One of 'public', 'unauthenticated', 'forbidden', 'noncompliant', 'allowed', 'fallthrough'
        pattern: Matched route pattern, if any
    """
    increment_counter("rbac.routes", labels={"decision": decision})
    if pattern:
        increment_counter("rbac.routes.by_pattern", labels={"decision": decision, "pattern": pattern})


def record_compliance_evaluation(compliant: bool, reason: Optional[str] = None):
    """Record a compliance evaluation and its failing condition."""
    increment_counter("rbac.compliance", labels={"compliant": str(compliant).lower()})
    if reason:
        increment_counter("rbac.compliance.failures", labels={"reason": reason})


def record_role_change(outcome: str, new_role: Optional[str] = None):
    """Record a role administration attempt by outcome."""
    increment_counter("rbac.role_changes", labels={"outcome": outcome})
    if new_role and outcome == "success":
        increment_counter("rbac.role_changes.by_role", labels={"role": new_role})


def audit_rbac_denial(
    user_id: Optional[str],
    role: Optional[str],
    route: str,
    method: str = "unknown",
    permission: Optional[str] = None,
    required_roles: Optional[List[str]] = None,
    metadata: Optional[Dict[str, Any]] = None
):
    """
    Emit audit log entry for an access denial.

    Creates structured log entry for security monitoring.

    Args:
        user_id: User ID who was denied (None for anonymous)
        role: Resolved role of the user
        route: Route/endpoint being accessed
        method: HTTP method
        permission: Permission that was missing, for permission gates
        required_roles: Roles the route accepts, for route gates
        metadata: Additional context
    """
    audit_entry = {
        "event": "rbac_denial",
        "user_id": user_id or "anonymous",
        "role": role,
        "route": route,
        "method": method,
        "timestamp": time.time(),
    }
    if permission:
        audit_entry["permission"] = permission
    if required_roles:
        audit_entry["required_roles"] = required_roles
    if metadata:
        audit_entry["metadata"] = metadata

    audit_logger.warning(
        f"RBAC_DENIAL user={user_id or 'anonymous'} role={role} "
        f"permission={permission or '-'} required_roles={','.join(required_roles or []) or '-'} "
        f"route={method} {route}",
        extra={"audit": audit_entry}
    )

    increment_counter("rbac.audit.denials")


def audit_role_change(
    target_user_id: str,
    performed_by: str,
    previous_role: Optional[str],
    new_role: str,
    action: str,
    audit_id: Optional[str] = None,
):
    """Emit audit log entry for a completed role change."""
    audit_entry = {
        "event": action,
        "target_user_id": target_user_id,
        "performed_by": performed_by,
        "previous_role": previous_role,
        "new_role": new_role,
        "audit_id": audit_id,
        "timestamp": time.time(),
    }
    audit_logger.info(
        f"ROLE_CHANGE action={action} target={target_user_id} by={performed_by} "
        f"{previous_role} -> {new_role} audit_id={audit_id}",
        extra={"audit": audit_entry}
    )


def get_rbac_metrics() -> Dict[str, Any]:
    """
    Get all RBAC-related metrics grouped by category.

    Returns:
        Dictionary keyed by the second segment of the metric name
        (e.g. 'allowed', 'routes', 'compliance')
    """
    all_metrics = _metrics.get_all_metrics()

    rbac_metrics: Dict[str, Any] = {
        "authorization": {},
        "routes": {},
        "compliance": {},
        "role_changes": {},
        "audit": {},
        "latency": {},
    }
    category_map = {
        "allowed": "authorization",
        "denied": "authorization",
        "role_distribution": "authorization",
    }

    for metric_name, metric_data in all_metrics.get("counters", {}).items():
        if not metric_name.startswith("rbac."):
            continue
        segment = metric_name.split(".")[1]
        category = category_map.get(segment, segment)
        rbac_metrics.setdefault(category, {})[metric_name] = metric_data

    for metric_name, metric_data in all_metrics.get("histograms", {}).items():
        if metric_name.startswith("rbac."):
            rbac_metrics["latency"][metric_name] = metric_data

    return rbac_metrics
