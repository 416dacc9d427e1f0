'''
Terminal Traffic Simulation:
* Signaled intersections advanced on a fixed tick
* Emergency vehicle preemption, weather and rush hour events
* Immutable per-tick snapshots for rendering and statistics
'''

__version__ = '0.4.0'
