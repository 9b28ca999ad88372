"""Tests for ChunkLogSampler."""

from __future__ import annotations

import logging

from vitransfer.sampled_logger import ChunkLogSampler

LOGGER_NAME = "tests.sampled"


def logged_messages(caplog) -> list[str]:
    return [r.getMessage() for r in caplog.records if r.name == LOGGER_NAME]


def test_logs_first_and_last_chunk_of_sampled_transfers(caplog) -> None:
    caplog.set_level(logging.INFO, logger=LOGGER_NAME)
    sampler = ChunkLogSampler(
        "#%d chunk %d",
        every_nth_transfer=3,
        target_logger=logging.getLogger(LOGGER_NAME),
    )

    for key in ("a", "b", "c"):
        for chunk_idx in range(4):
            sampler.log(key, chunk_idx, 4, chunk_idx)

    assert logged_messages(caplog) == [
        "#1 chunk 0",
        "#1 chunk 3",
        "#3 chunk 0",
        "#3 chunk 3",
    ]


def test_single_chunk_transfer_logged_once(caplog) -> None:
    caplog.set_level(logging.INFO, logger=LOGGER_NAME)
    sampler = ChunkLogSampler("#%d done", target_logger=logging.getLogger(LOGGER_NAME))

    sampler.log("a", 0, 1)

    assert logged_messages(caplog) == ["#1 done"]


def test_forget_assigns_new_number(caplog) -> None:
    caplog.set_level(logging.INFO, logger=LOGGER_NAME)
    sampler = ChunkLogSampler(
        "#%d", every_nth_transfer=2, target_logger=logging.getLogger(LOGGER_NAME)
    )

    sampler.log("a", 0, 2)
    sampler.forget("a")
    sampler.log("a", 0, 2)

    assert logged_messages(caplog) == ["#1", "#2"]
