"""Tests for the grid goal environment and arena generation."""

import pytest

from gridrl.domain.environment import Environment, GridGoalEnvironment, PositionedEnvironment
from gridrl.domain.types import Action, Arena, GridConfig
from gridrl.utils.grid_factory import (
    add_random_cells, create_empty_arena, generate_arena, place_start_and_goal,
)
from gridrl.utils.rng import SeededRNG


def open_config(**overrides) -> GridConfig:
    values = dict(width=5, height=5, wall_density=0.0, hazard_density=0.0,
                  fixed_start=(0, 0), fixed_goal=(2, 0), seed=3)
    values.update(overrides)
    return GridConfig(**values)


def test_environment_satisfies_protocols():
    env = GridGoalEnvironment(open_config())
    assert isinstance(env, Environment)
    assert isinstance(env, PositionedEnvironment)


def test_reset_places_agent_on_start():
    env = GridGoalEnvironment(open_config())
    obs = env.reset()
    assert env.agent_pos == (0, 0)
    assert env.agent_position() == (0, 0, 0)
    assert not env.is_done()
    # dx, dz, dy, distance, blocked N S E W
    assert obs.features == (1.0, 0.0, 0.0, 0.2, 1.0, 0.0, 0.0, 1.0)


def test_reaching_goal_is_terminal_success():
    env = GridGoalEnvironment(open_config())
    env.reset()
    first = env.step(Action.MOVE_EAST)
    assert not first.done
    assert first.reward == pytest.approx(-0.01 + 0.2)

    second = env.step(Action.MOVE_EAST)
    assert second.done
    assert second.reward == 10.0
    assert env.is_done()


def test_step_after_done_has_no_effect():
    env = GridGoalEnvironment(open_config(fixed_goal=(1, 0)))
    env.reset()
    env.step(Action.MOVE_EAST)
    position = env.agent_pos

    result = env.step(Action.MOVE_SOUTH)
    assert result.done
    assert result.reward == 0.0
    assert env.agent_pos == position


def test_walls_and_edges_keep_agent_in_place():
    env = GridGoalEnvironment(open_config())
    env.reset()
    env.arena.cells[(0, 1)] = "wall"

    result = env.step(Action.MOVE_NORTH)
    assert env.agent_pos == (0, 0)
    assert result.reward == pytest.approx(-0.01)

    env.step(Action.MOVE_SOUTH)
    assert env.agent_pos == (0, 0)
    assert env.get_observation().blocked() == (True, True, False, True)


def test_moving_away_is_penalized():
    env = GridGoalEnvironment(open_config())
    env.reset()
    result = env.step(Action.MOVE_SOUTH)
    assert result.reward == pytest.approx(-0.01 - 0.2)


def test_hazard_is_terminal_failure():
    env = GridGoalEnvironment(open_config())
    env.arena.cells[(1, 0)] = "hazard"
    env.reset()
    result = env.step(Action.MOVE_EAST)
    assert result.done
    assert result.reward == -10.0


def test_step_budget_ends_episode_without_positive_reward():
    env = GridGoalEnvironment(open_config(fixed_goal=(4, 4), max_steps_per_episode=2))
    env.reset()
    assert not env.step(Action.MOVE_EAST).done
    last = env.step(Action.MOVE_EAST)
    assert last.done
    assert last.reward <= 0.0


def test_planar_layout_without_blocked_bits():
    env = GridGoalEnvironment(open_config(include_vertical=False, include_blocked=False))
    obs = env.reset()
    assert len(obs) == 3
    assert obs.blocked() is None


def test_reset_picks_new_positions_on_random_arena():
    env = GridGoalEnvironment(GridConfig(width=8, height=8, seed=5))
    starts = set()
    for _ in range(10):
        env.reset()
        assert env.start != env.goal
        assert env.arena.is_passable(env.start)
        starts.add(env.start)
    assert len(starts) > 1


def test_regenerate_each_episode_builds_new_arena():
    env = GridGoalEnvironment(GridConfig(width=6, height=6, regenerate_each_episode=True, seed=9))
    env.reset()
    first = env.arena
    env.reset()
    assert env.arena is not first


class TestGridFactory:

    def test_empty_arena_rejects_bad_dimensions(self):
        with pytest.raises(ValueError):
            create_empty_arena(0, 4)

    def test_random_cells_respect_density_and_exclusions(self):
        arena = create_empty_arena(10, 10)
        placed = add_random_cells(arena, "wall", 0.3, SeededRNG(1), exclude=[(0, 0)])
        assert placed == 30
        assert arena.kind((0, 0)) == "empty"
        assert sum(1 for kind in arena.cells.values() if kind == "wall") == 30

    def test_density_out_of_range(self):
        with pytest.raises(ValueError):
            add_random_cells(create_empty_arena(3, 3), "hazard", 1.5, SeededRNG(1))

    def test_fixed_positions_are_validated(self):
        arena = create_empty_arena(3, 3)
        with pytest.raises(ValueError):
            place_start_and_goal(arena, SeededRNG(1), start=(5, 5))
        with pytest.raises(ValueError):
            place_start_and_goal(arena, SeededRNG(1), start=(1, 1), goal=(1, 1))

    def test_single_free_cell_cannot_host_start_and_goal(self):
        arena = Arena(1, 1)
        with pytest.raises(ValueError):
            place_start_and_goal(arena, SeededRNG(1))

    def test_generated_start_and_goal_stay_free(self):
        config = GridConfig(width=6, height=6, wall_density=0.5, hazard_density=0.3,
                            fixed_start=(0, 0), fixed_goal=(5, 5))
        arena, start, goal = generate_arena(config, SeededRNG(2))
        assert arena.kind(start) == "empty"
        assert arena.kind(goal) == "empty"
        assert (start, goal) == ((0, 0), (5, 5))
