"""Tests for CSV transition logging."""

import logging

from gridrl.domain.types import Action, Observation
from gridrl.utils.transition_log import CsvTransitionLogger, read_transitions


def test_writes_header_and_rows(tmp_path):
    transition_logger = CsvTransitionLogger(str(tmp_path / "logs"))
    transition_logger.log_transition(
        Observation.of([1, 0, 0.25]), Action.MOVE_EAST, -0.01, Observation.of([1, 0, 0.125]), False
    )
    transition_logger.log_transition(
        Observation.of([1, 0, 0.125]), Action.STAY, 10.0, Observation.of([0, 0, 0]), True
    )
    transition_logger.close()

    text = (tmp_path / "logs" / "transitions.csv").read_text().splitlines()
    assert text[0] == "obs,action,reward,next_obs,done"
    assert text[1] == "1.000000;0.000000;0.250000,2,-0.010000,1.000000;0.000000;0.125000,0"
    assert text[2].endswith(",4,10.000000,0.000000;0.000000;0.000000,1")
    assert transition_logger.rows_written == 2


def test_appends_without_repeating_header(tmp_path):
    obs = Observation.of([0, 1, 0.5])
    for _ in range(2):
        transition_logger = CsvTransitionLogger(str(tmp_path))
        transition_logger.log_transition(obs, Action.MOVE_NORTH, 0.0, obs, False)
        transition_logger.close()

    records = read_transitions(str(tmp_path))
    assert len(records) == 2
    assert records[0].action is Action.MOVE_NORTH
    assert records[0].state.features == (0.0, 1.0, 0.5)
    assert records[1].done is False


def test_close_is_idempotent_and_stops_writing(tmp_path):
    obs = Observation.of([0, 1, 0.5])
    transition_logger = CsvTransitionLogger(str(tmp_path))
    transition_logger.close()
    transition_logger.close()
    assert transition_logger.closed

    transition_logger.log_transition(obs, Action.MOVE_NORTH, 0.0, obs, False)
    assert transition_logger.rows_written == 0
    assert read_transitions(str(tmp_path)) == []


def test_read_transitions_without_log(tmp_path):
    assert read_transitions(str(tmp_path)) is None


class FullDiskWriter:
    def writerow(self, row):
        raise OSError("disk full")


def test_write_errors_are_counted_and_logged(tmp_path, caplog):
    obs = Observation.of([0, 1, 0.5])
    transition_logger = CsvTransitionLogger(str(tmp_path))
    transition_logger._writer = FullDiskWriter()

    with caplog.at_level(logging.WARNING, logger="gridrl.utils.transition_log"):
        transition_logger.log_transition(obs, Action.MOVE_NORTH, 0.0, obs, False)
        transition_logger.log_transition(obs, Action.STAY, 1.0, obs, True)

    assert transition_logger.rows_written == 0
    assert transition_logger.failed_writes == 2
    assert "Failed to write transition" in caplog.text
    assert "disk full" in caplog.text
    transition_logger.close()
    assert read_transitions(str(tmp_path)) == []


def test_write_to_closed_file_is_counted(tmp_path, caplog):
    obs = Observation.of([0, 1, 0.5])
    transition_logger = CsvTransitionLogger(str(tmp_path))
    transition_logger._file.close()

    with caplog.at_level(logging.WARNING, logger="gridrl.utils.transition_log"):
        transition_logger.log_transition(obs, Action.MOVE_NORTH, 0.0, obs, False)
        transition_logger.close()

    assert transition_logger.failed_writes == 1
    assert transition_logger.closed
    assert "Failed to write transition" in caplog.text
