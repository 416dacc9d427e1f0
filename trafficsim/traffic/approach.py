'''
Approach directions - one lane group feeding an intersection, paired with one light
'''

# Standard Library:
from enum import Enum


class Approach(Enum):
    '''
    Approach named for the side traffic arrives from (NORTH = southbound traffic)
    '''
    NORTH = 'N'
    SOUTH = 'S'
    EAST = 'E'
    WEST = 'W'

    def __repr__(self) -> str:
        return self.name

    @property
    def opposite(self) -> 'Approach':
        return _OPPOSITES[self]

    @property
    def axis(self) -> str:
        '''
        Direction of travel through the intersection: 'NS' or 'EW'
        '''
        return 'NS' if self in (Approach.NORTH, Approach.SOUTH) else 'EW'

    @property
    def heading(self) -> tuple[int, int]:
        '''
        (row, column) step taken by traffic leaving the intersection from this approach
        '''
        return _HEADINGS[self]


_OPPOSITES = {
    Approach.NORTH: Approach.SOUTH,
    Approach.SOUTH: Approach.NORTH,
    Approach.EAST: Approach.WEST,
    Approach.WEST: Approach.EAST,
}
# Grid rows grow southward and columns grow eastward:
_HEADINGS = {
    Approach.NORTH: (1, 0),
    Approach.SOUTH: (-1, 0),
    Approach.EAST: (0, -1),
    Approach.WEST: (0, 1),
}
# Order lights are advanced and reported in
FOUR_WAY = (Approach.NORTH, Approach.SOUTH, Approach.EAST, Approach.WEST)


def get_direction(current_node: tuple[int, int], next_node: tuple[int, int]) -> str:
    '''
    Simple helper function to determine the axis of travel between two grid positions
    '''
    return 'NS' if current_node[1] == next_node[1] else 'EW'
