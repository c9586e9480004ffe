"""Arena factory for creating and randomizing grid environments."""

from typing import Optional, Tuple, Iterable

from ..domain.types import Arena, Coord, CellKind, GridConfig
from .rng import SeededRNG


def create_empty_arena(width: int, height: int) -> Arena:
    """
    Create a new arena with every cell free.

    Args:
        width: Arena width (must be > 0)
        height: Arena height (must be > 0)

    Raises:
        ValueError: If width or height <= 0
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Arena dimensions must be positive, got {width}x{height}")
    return Arena(width=width, height=height)


def add_random_cells(arena: Arena, kind: CellKind, density: float, rng: SeededRNG,
                     exclude: Iterable[Coord] = ()) -> int:
    """
    Turn a random share of the free cells into ``kind``.

    Args:
        arena: Arena to modify
        kind: Cell kind to place ("wall" or "hazard")
        density: Share of all arena cells to convert (0.0 to 1.0)
        rng: Random number generator to use
        exclude: Coordinates that must stay free

    Returns:
        Number of cells placed
    """
    if not (0.0 <= density <= 1.0):
        raise ValueError(f"Density must be between 0.0 and 1.0, got {density}")

    excluded = set(exclude)
    candidates = [coord for coord in arena.free_cells() if coord not in excluded]
    count = min(int(arena.width * arena.height * density), len(candidates))

    for coord in rng.sample(candidates, count):
        arena.cells[coord] = kind
    return count


def place_start_and_goal(arena: Arena, rng: SeededRNG, start: Optional[Coord] = None,
                         goal: Optional[Coord] = None) -> Tuple[Coord, Coord]:
    """
    Pick start and goal cells.

    Fixed coordinates are validated; missing ones are sampled from the free
    cells so that start and goal always differ.

    Raises:
        ValueError: If a fixed coordinate is invalid or no free cells remain
    """
    for label, coord in (("start", start), ("goal", goal)):
        if coord is not None and not arena.is_valid_coord(coord):
            raise ValueError(f"{label} {coord} is outside the {arena.width}x{arena.height} arena")

    free = arena.free_cells()
    if start is None:
        options = [c for c in free if c != goal]
        if not options:
            raise ValueError("No free cell left for the start position")
        start = rng.choice(options)
    if goal is None:
        options = [c for c in free if c != start]
        if not options:
            raise ValueError("No free cell left for the goal position")
        goal = rng.choice(options)
    if start == goal:
        raise ValueError(f"Start and goal must differ, both are {start}")

    # Fixed positions always win over random obstacles
    arena.cells.pop(start, None)
    arena.cells.pop(goal, None)
    return start, goal


def generate_arena(config: GridConfig, rng: SeededRNG) -> Tuple[Arena, Coord, Coord]:
    """Build an arena with walls and hazards plus start and goal positions."""
    arena = create_empty_arena(config.width, config.height)
    start, goal = place_start_and_goal(arena, rng, config.fixed_start, config.fixed_goal)

    reserved = (start, goal)
    add_random_cells(arena, "wall", config.wall_density, rng, exclude=reserved)
    add_random_cells(arena, "hazard", config.hazard_density, rng, exclude=reserved)
    return arena, start, goal
