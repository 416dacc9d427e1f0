'''
Road network:
* Intersections are nodes of a networkx graph ('intersection' and 'pos' node
  attributes), roads between them are edges with a 'length'
* Each intersection keeps its own conflict table - lights of neighboring
  intersections are not coordinated
* Traffic leaving an approach lane continues straight; if a road leads to a
  neighboring intersection the vehicle joins the same approach there
'''

# Standard Library:
from typing import Any

# Third-Party:
import networkx

# Local:
from trafficsim.traffic.approach import Approach
from trafficsim.traffic.intersection import Intersection
from trafficsim.traffic.lights import LightDurations


def get_layout(name: str) -> dict[str, Any]:
    '''
    Convenience function to select an intersection layout
    '''
    # One four-way intersection:
    single = {
        'intersections': [
            (0, (0, 0)),
        ],
        'roads': [],
    }
    # Two intersections on an east-west corridor:
    corridor = {
        'intersections': [
            (0, (0, 0)), (1, (0, 1)),
        ],
        'roads': [
            (0, 1),
        ],
    }
    # 2x2 grid:
    grid = {
        'intersections': [
            (0, (0, 0)), (1, (0, 1)),
            (2, (1, 0)), (3, (1, 1)),
        ],
        'roads': [
            (0, 1), (2, 3),
            (0, 2), (1, 3),
        ],
    }

    match name:
        case 'single':
            return single
        case 'corridor':
            return corridor
        case 'grid':
            return grid
        case _:
            raise ValueError(f'Expected layout of single, corridor, or grid, got: {name}')


def setup_network(layout: dict[str, Any], durations: LightDurations | None=None,
                  road_capacity: int=12, concurrent_opposites: bool=True,
                  road_length: float=80.0, debug: bool=False) -> networkx.Graph:
    '''
    Build the road network for simulation
    '''
    G = networkx.Graph()
    for intersection_id, position in layout['intersections']:
        intersection = Intersection(intersection_id, position, durations=durations,
                                    road_capacity=road_capacity,
                                    concurrent_opposites=concurrent_opposites, debug=debug)
        G.add_node(intersection_id, pos=position, intersection=intersection)
    G.add_edges_from(layout['roads'])
    for edge in G.edges:
        G.edges[edge]['length'] = road_length

    return G


def intersections_of(graph: networkx.Graph) -> dict[int, Intersection]:
    return {node: data['intersection'] for node, data in sorted(graph.nodes(data=True))}


def downstream(graph: networkx.Graph, intersection_id: int, approach: Approach) -> int | None:
    '''
    Intersection reached by traffic leaving intersection_id from approach, if a road leads there
    '''
    row, column = graph.nodes[intersection_id]['pos']
    step_row, step_column = approach.heading
    target = (row + step_row, column + step_column)
    for neighbor in graph.neighbors(intersection_id):
        if graph.nodes[neighbor]['pos'] == target:
            return neighbor
    return None
