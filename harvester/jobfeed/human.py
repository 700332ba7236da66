"""Human-like pacing and input simulation.

Swappable collaborator: the capture state machine only calls it at fixed
points (before clicks, between jobs, while typing). All pauses are scaled by
`delay_scale`, so tests run with a scale of 0.
"""
from __future__ import annotations
import random
import time
from typing import TYPE_CHECKING, Callable, Optional, Tuple

if TYPE_CHECKING:  # pragma: no cover
    from .page_driver import PageDriver


class HumanInput:
    def __init__(self, delay_scale: float = 1.0, sleep: Callable[[float], object] = time.sleep, rng: Optional[random.Random] = None):
        self.delay_scale = delay_scale
        self._sleep = sleep
        self.rng = rng or random.Random()

    def set_sleep(self, sleep: Callable[[float], object]):
        self._sleep = sleep

    def sleep(self, seconds: float):
        seconds = seconds * self.delay_scale
        if seconds > 0:
            self._sleep(seconds)

    def random_delay(self, min_s: float = 1.0, max_s: float = 3.0):
        if max_s < min_s:
            max_s = min_s
        self.sleep(self.rng.uniform(min_s, max_s))

    def pause(self, bounds: Tuple[float, float]):
        self.random_delay(*bounds)

    def typing_delay_ms(self) -> int:
        return self.rng.randint(8, 40)

    def click_delay_ms(self) -> int:
        return self.rng.randint(50, 150)

    def move_mouse_to(self, driver: 'PageDriver', selector: str, steps: int = 10):
        """Move the pointer toward the element centre in small jittered steps."""
        box = driver.bounding_box(selector)
        if not box:
            return
        target_x = box['x'] + box['width'] / 2 + self.rng.uniform(-5, 5)
        target_y = box['y'] + box['height'] / 2 + self.rng.uniform(-5, 5)
        start_x, start_y = driver.mouse_position
        for i in range(1, steps + 1):
            progress = i / steps
            driver.move_mouse(start_x + (target_x - start_x) * progress, start_y + (target_y - start_y) * progress)
            self.sleep(0.05 + self.rng.random() * 0.05)

    def simulate_scrolling(self, driver: 'PageDriver', step_min: int = 100, step_max: int = 200, max_steps: int = 60):
        height = driver.scroll_metrics()['height']
        position = 0
        for _ in range(max_steps):
            if position >= height:
                break
            position += self.rng.randint(step_min, step_max)
            driver.scroll_to(position)
            self.sleep(0.5 + self.rng.random())


class InstantHumanInput(HumanInput):
    """No pauses and deterministic delays; used by the test-suite and dry runs."""

    def __init__(self):
        super().__init__(delay_scale=0.0, rng=random.Random(0))
