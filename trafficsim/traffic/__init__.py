'''
Road side of the simulation: approaches, traffic lights, intersections,
vehicles and the road network connecting intersections
'''
