'''
Time side of the simulation: weather, scheduled events, statistics, snapshots
and the engine/runner that advance everything one tick at a time
'''
