"""
Performance Monitor - Answer latency and process resource tracking.

This module records how long the assistant takes to answer questions and
samples CPU and memory usage of the running process with psutil. The summary
feeds the assistant statistics and the CLI ``stats`` table.

Example:
    ```python
    from rag_assistant.performance_monitor import PerformanceMonitor

    monitor = PerformanceMonitor()
    with monitor.measure("answer"):
        assistant.ask_question("What is RAG?")

    console.print(monitor.display_performance_table())
    ```

Classes:
    PerformanceMonitor: Latency recording and resource sampling.
    PerformanceContext: Context manager timing a single operation.

Dependencies:
    - psutil: For process and system resource monitoring.
    - numpy: For statistical calculations.
    - rich: For console tables.
"""

import logging
import threading
import time
from typing import Any, Dict, List, Optional

import numpy as np
import psutil
from rich.table import Table

logger = logging.getLogger(__name__)

MAX_SAMPLES = 100


class PerformanceMonitor:
    """
    Tracks answer latencies and process resources
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._process = psutil.Process()
        self._timers: Dict[str, float] = {}
        self.latencies: List[float] = []
        self.operation_counts: Dict[str, int] = {}

    def record_latency(self, seconds: float, operation: str = "answer") -> None:
        """Record the duration of one operation, keeping the last 100 samples"""
        with self._lock:
            self.latencies.append(seconds)
            if len(self.latencies) > MAX_SAMPLES:
                self.latencies.pop(0)
            self.operation_counts[operation] = self.operation_counts.get(operation, 0) + 1

    def start_timer(self, operation_name: str) -> float:
        start_time = time.perf_counter()
        self._timers[operation_name] = start_time
        return start_time

    def stop_timer(self, operation_name: str, start_time: Optional[float] = None) -> float:
        """
        Stop a timer for a specific operation and record the elapsed time.

        Args:
            operation_name: Name of the operation being timed
            start_time: Optional start time (if not provided, uses stored start time)

        Returns:
            float: Elapsed time in seconds, 0.0 if the timer was never started
        """
        if start_time is None:
            start_time = self._timers.pop(operation_name, None)
            if start_time is None:
                logger.warning(f"No start time found for operation '{operation_name}'")
                return 0.0
        else:
            self._timers.pop(operation_name, None)

        elapsed = time.perf_counter() - start_time
        self.record_latency(elapsed, operation_name)
        return elapsed

    def measure(self, operation_name: str) -> "PerformanceContext":
        return PerformanceContext(self, operation_name)

    def get_process_memory_mb(self) -> float:
        return self._process.memory_info().rss / (1024 * 1024)

    def get_performance_summary(self) -> Dict[str, Any]:
        """Get current performance summary"""
        with self._lock:
            latencies = list(self.latencies)
            total = sum(self.operation_counts.values())

        average = float(np.mean(latencies)) if latencies else 0.0
        return {
            "process_memory_mb": round(self.get_process_memory_mb(), 1),
            "cpu_usage_percent": psutil.cpu_percent(interval=None),
            "system_memory_percent": psutil.virtual_memory().percent,
            "average_latency_ms": round(average * 1000, 1),
            "p95_latency_ms": round(float(np.percentile(latencies, 95)) * 1000, 1) if latencies else 0.0,
            "answers_per_minute": round(60.0 / average, 2) if average > 0 else 0.0,
            "operations_recorded": total,
        }

    def display_performance_table(self) -> Table:
        """Create a rich table with performance data"""
        summary = self.get_performance_summary()

        table = Table(title="Performance Monitor")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="green")
        table.add_column("Status", style="yellow")

        mem_status = "Good" if summary["system_memory_percent"] < 80 else \
            "High" if summary["system_memory_percent"] < 95 else "Critical"
        table.add_row("System Memory", f"{summary['system_memory_percent']:.1f}%", mem_status)
        table.add_row("Process Memory", f"{summary['process_memory_mb']:.1f} MB", "")
        table.add_row("CPU Usage", f"{summary['cpu_usage_percent']:.1f}%", "")

        if summary["operations_recorded"]:
            latency_status = "Fast" if summary["average_latency_ms"] < 5000 else \
                "Normal" if summary["average_latency_ms"] < 30000 else "Slow"
            table.add_row("Answer Latency", f"{summary['average_latency_ms']:.0f}ms", latency_status)
            table.add_row("p95 Latency", f"{summary['p95_latency_ms']:.0f}ms", "")
        else:
            table.add_row("Answer Latency", "N/A", "No Data")

        return table


class PerformanceContext:
    """Context manager for measuring operation performance"""

    def __init__(self, monitor: PerformanceMonitor, operation_name: str):
        self.monitor = monitor
        self.operation_name = operation_name
        self.start_time = None
        self.elapsed = 0.0

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is not None:
            self.elapsed = time.perf_counter() - self.start_time
            self.monitor.record_latency(self.elapsed, self.operation_name)
            logger.debug(f"{self.operation_name} completed in {self.elapsed:.3f}s")
        return False
