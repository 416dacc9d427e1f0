'''
Exceptions raised by the traffic simulator

* ConfigError - invalid configuration, fatal, raised before the engine starts
* OverrideDenied - recoverable, the caller may retry on a later tick
* CapacityExceeded - a spawn request was rejected, nothing was created
* SimulationError - fatal invariant violation or misuse of the engine
'''


class TrafficSimError(Exception):
    '''
    Base class for all simulator errors
    '''


class ConfigError(TrafficSimError):
    '''
    Invalid configuration value
    '''


class OverrideDenied(TrafficSimError):
    '''
    Emergency override refused because a conflicting approach already holds one
    '''
    def __init__(self, intersection_id: int, approach, holder) -> None:
        self.intersection_id = intersection_id
        self.approach = approach
        self.holder = holder
        super().__init__(f'Override for {approach!r} at intersection {intersection_id} denied - '
                         f'{holder!r} holds a conflicting override')


class CapacityExceeded(TrafficSimError):
    '''
    Spawn request rejected (lane full, entry blocked or vehicle limit reached)
    '''
    def __init__(self, message: str, intersection_id: int | None=None, approach=None) -> None:
        self.intersection_id = intersection_id
        self.approach = approach
        super().__init__(message)


class SimulationError(TrafficSimError):
    '''
    Fatal engine error - the engine halts without emitting a snapshot
    '''
