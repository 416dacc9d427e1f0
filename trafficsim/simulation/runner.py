'''
Simulation runner - paces engine ticks with a SimPy process

* Headless runs use simpy.Environment: virtual time, reproducible, as fast as possible
* Interactive runs use simpy.rt.RealtimeEnvironment so one tick interval takes one
  wall-clock tick interval (strict=False tolerates slow frames); after a stall the
  environment is re-anchored to the wall clock so missed ticks are skipped, not replayed
* Control commands are checked between ticks only, never while the engine is updating
* Shutdown is terminal: no further ticks, the last snapshot stays available for the
  caller's statistics report
'''

# Standard Library:
from collections.abc import Callable, Generator, Iterable
import logging
import time

# Third-Party:
import simpy
import simpy.events
import simpy.rt

# Local:
from trafficsim.simulation.clock import TickClock
from trafficsim.simulation.commands import Command, CommandQueue, Pause, Resume, Shutdown
from trafficsim.simulation.engine import SimulationEngine
from trafficsim.simulation.snapshot import SimulationSnapshot


logger = logging.getLogger(__name__)

SnapshotConsumer = Callable[[SimulationSnapshot], None]


class SimulationRunner:
    def __init__(self, engine: SimulationEngine, consumers: Iterable[SnapshotConsumer]=(),
                 realtime: bool=False, commands: CommandQueue | None=None) -> None:
        """
        Initializes the runner.

        Args:
            engine (SimulationEngine): Engine advanced once per tick interval.
            consumers (Iterable[SnapshotConsumer]): Called with every snapshot after the tick.
            realtime (bool): Pace ticks against the wall clock instead of virtual time.
            commands (CommandQueue): Shared command mailbox, created if not given.
        """
        self.engine = engine
        self.consumers = list(consumers)
        self.commands = commands or CommandQueue()
        self.realtime = realtime
        if realtime:
            self.env = simpy.rt.RealtimeEnvironment(strict=False)
            time_source = time.monotonic
        else:
            self.env = simpy.Environment()
            time_source = lambda: self.env.now
        config = engine.config
        self.clock = TickClock(time_source, config.time_scale, config.max_step)
        self.tick_interval = config.tick_interval
        self.paused = False
        self.stopped = False
        self.ticks_run = 0
        self.resyncs = 0  # Realtime re-anchors after the wall clock ran ahead
        self.last_snapshot = None

    def __repr__(self) -> str:
        return f'SimulationRunner({self.env.now:05.1f}s, {self.paused=}, {self.stopped=})'

    def submit(self, command: Command) -> None:
        self.commands.submit(command)

    def run(self, duration: float | None=None, max_ticks: int | None=None) -> SimulationSnapshot | None:
        '''
        Run until shutdown, duration seconds of environment time or max_ticks engine ticks

        Returns:
            The last snapshot emitted (None if no tick ran).
        '''
        if self.stopped:
            return self.last_snapshot
        process = self.env.process(self._loop(duration, max_ticks))
        self.env.run(until=process)
        return self.last_snapshot

    def _loop(self, duration: float | None,
              max_ticks: int | None) -> Generator[simpy.events.Event, None, None]:
        '''
        Tick loop: wait one tick interval, apply lifecycle commands, step, publish
        '''
        start = self.env.now
        self.clock.reset()
        logger.info(f'{start:05.1f}s: Runner started ({"realtime" if self.realtime else "headless"}, '
                    f'{1 / self.tick_interval:.0f} ticks/s)')
        while True:
            if self.realtime:
                self._resync()
            yield self.env.timeout(self.tick_interval)
            if not self._handle_commands():
                return

            if not self.paused:
                snapshot = self.engine.step(self.clock.elapsed())
                self.last_snapshot = snapshot
                self.ticks_run += 1
                for consumer in self.consumers:
                    consumer(snapshot)
                if max_ticks is not None and self.ticks_run >= max_ticks:
                    return
            else:
                # Time spent paused is not simulated
                self.clock.reset()

            if duration is not None and self.env.now - start >= duration:
                return

    def _resync(self) -> None:
        '''
        Re-anchor the realtime environment when the wall clock ran more than one tick
        interval ahead (slow frame, stalled consumer, suspended process)

        RealtimeEnvironment(strict=False) would otherwise fire every overdue timeout
        back to back; the stall itself is already clamped by the TickClock.
        '''
        due = self.env.real_start + (self.env.now - self.env.env_start) * self.env.factor
        lag = time.monotonic() - due
        if lag <= self.tick_interval:
            return
        self.env.env_start = self.env.now
        self.env.sync()
        self.resyncs += 1
        logger.debug(f'{self.env.now:05.1f}s: Wall clock {lag:.2f}s ahead, skipping missed ticks')

    def _handle_commands(self) -> bool:
        '''
        Apply queued commands; returns False once Shutdown has been seen
        '''
        for command in self.commands.drain():
            match command:
                case Shutdown():
                    self.stopped = True
                    self.engine.shutdown()
                    logger.info(f'{self.env.now:05.1f}s: Shutdown requested')
                    return False
                case Pause():
                    if not self.paused:
                        self.paused = True
                        logger.info(f'{self.env.now:05.1f}s: Paused at tick {self.engine.tick}')
                case Resume():
                    if self.paused:
                        self.paused = False
                        logger.info(f'{self.env.now:05.1f}s: Resumed at tick {self.engine.tick}')
                case _:
                    self.engine.submit(command)
        return True
