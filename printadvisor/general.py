import contextlib
import time

import torch


def determine_device(device_arg):
    """Resolve "auto" (or no choice) to cuda when torch sees a GPU, else cpu."""
    if device_arg not in (None, "auto"):
        return device_arg
    return "cuda" if torch.cuda.is_available() else "cpu"


class Profiler(contextlib.ContextDecorator):
    """
    Wall-clock timer for model loading and inference, usable as a context
    manager or a decorator.

    Each timed block sets ``elapsed_time`` (seconds), adds it to
    ``accumulated_time`` and bumps ``count``. When torch sees a GPU the
    device is synchronized before reading the clock, so queued kernels are
    part of the measurement.

    Example:
        load_timer = Profiler()
        with load_timer:
            session.load("advisor.onnx")
        print(f"Loaded in {load_timer.elapsed_time * 1000:.2f} ms")

        @Profiler()
        def recommend_once():
            return recommender.recommend(features, profile)
    """

    def __init__(self, accumulated_time=0.0):
        self.accumulated_time = accumulated_time
        self.elapsed_time = 0.0
        self.count = 0
        self.cuda_available = torch.cuda.is_available()
        self._start_time = 0.0

    def __enter__(self):
        self._start_time = self._now()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.elapsed_time = self._now() - self._start_time
        self.accumulated_time += self.elapsed_time
        self.count += 1

    def _now(self):
        if self.cuda_available:
            torch.cuda.synchronize()
        return time.perf_counter()

    def reset(self):
        """Forget every timed block."""
        self.accumulated_time = self.elapsed_time = 0.0
        self.count = 0

    def get_avg_time_ms(self, num_operations=None):
        """
        Mean milliseconds per operation.

        ``num_operations`` defaults to the number of timed blocks; 0.0 is
        returned when there is nothing to average over.
        """
        n = self.count if num_operations is None else num_operations
        return self.accumulated_time / n * 1000 if n > 0 else 0.0
