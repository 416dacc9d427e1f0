'''
Tick clock - turns time-source readings into scaled, clamped simulation steps

A long stall (debugger pause, suspended terminal) becomes a single step of at most
max_step seconds instead of a burst of catch-up ticks.
'''

# Standard Library:
from collections.abc import Callable
import logging
import time

# Local:
from trafficsim.errors import ConfigError


logger = logging.getLogger(__name__)


class TickClock:
    def __init__(self, time_source: Callable[[], float]=time.monotonic, time_scale: float=1.0,
                 max_step: float=0.25) -> None:
        if time_scale <= 0:
            raise ConfigError(f'time_scale must be positive, got: {time_scale}')
        if max_step <= 0:
            raise ConfigError(f'max_step must be positive, got: {max_step}')
        self.time_source = time_source
        self.time_scale = time_scale
        self.max_step = max_step
        self.stalls = 0  # Steps cut short by max_step
        self._last = None

    def reset(self) -> None:
        '''
        Start measuring from now (start of run, after resume)
        '''
        self._last = self.time_source()

    def elapsed(self) -> float:
        '''
        Scaled time since the previous reading, clamped to max_step
        '''
        now = self.time_source()
        if self._last is None:
            self._last = now
            return 0.0
        step = max(0.0, now - self._last) * self.time_scale
        self._last = now
        if step > self.max_step:
            self.stalls += 1
            logger.debug(f'Clock stall: {step:.3f}s clamped to {self.max_step:.3f}s')
            return self.max_step
        return step
