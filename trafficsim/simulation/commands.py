'''
Control input - commands are queued and only ever applied between ticks

Pause, Resume and Shutdown are handled by the runner; InjectEvent, ParkVehicle
and DespawnVehicle are forwarded to the engine for the start of the next tick.
'''

# Standard Library:
from dataclasses import dataclass
import queue

# Local:
from trafficsim.simulation.events import Event


@dataclass(frozen=True)
class Pause:
    pass


@dataclass(frozen=True)
class Resume:
    pass


@dataclass(frozen=True)
class Shutdown:
    pass


@dataclass(frozen=True)
class InjectEvent:
    event: Event
    delay: int = 0  # Ticks after the next one


@dataclass(frozen=True)
class ParkVehicle:
    vehicle_id: int


@dataclass(frozen=True)
class DespawnVehicle:
    vehicle_id: int


Command = Pause | Resume | Shutdown | InjectEvent | ParkVehicle | DespawnVehicle
EngineCommand = InjectEvent | ParkVehicle | DespawnVehicle


class CommandQueue:
    '''
    Thread-safe command mailbox (signal handlers and input threads submit, the loop drains)
    '''
    def __init__(self) -> None:
        self._queue = queue.Queue()

    def __len__(self) -> int:
        return self._queue.qsize()

    def submit(self, command: Command) -> None:
        if not isinstance(command, Command):
            raise TypeError(f'Expected a control command, got: {command!r}')
        self._queue.put(command)

    def drain(self) -> list[Command]:
        commands = []
        while True:
            try:
                commands.append(self._queue.get_nowait())
            except queue.Empty:
                return commands
