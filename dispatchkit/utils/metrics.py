from typing import Dict, Any

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest


class MetricsManager:
    """Process-wide registry for dispatch metrics, backed by prometheus_client."""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(MetricsManager, cls).__new__(cls)
            cls._instance.metrics = {}
            cls._instance.registry = CollectorRegistry()
        return cls._instance

    def counter(self, name: str) -> Counter:
        if name not in self.metrics:
            self.metrics[name] = Counter(name, f"Counter for {name}", registry=self.registry)
        return self.metrics[name]

    def gauge(self, name: str) -> Gauge:
        if name not in self.metrics:
            self.metrics[name] = Gauge(name, f"Gauge for {name}", registry=self.registry)
        return self.metrics[name]

    def get_all(self) -> Dict[str, Any]:
        # Counter/Gauge keep their value in an internal holder
        return {k: v._value.get() for k, v in self.metrics.items()}

    def exposition(self) -> bytes:
        """Prometheus text format for the /metrics endpoint."""
        return generate_latest(self.registry)
