import logging

import pytest

import docvfs.logger as logger


@pytest.fixture(autouse=True)
def restore_level():
    level = logger.log.level
    yield
    logger.log.setLevel(level)


def test_summarize_matching_length():
    assert logger.summarize("abc", max_length=3) == "abc"


def test_summarize_exceeding_length():
    assert logger.summarize("abcdef", max_length=5) == "ab..."


def test_summarize_list():
    x = [1, 2, 3, 4, 5]
    assert logger.summarize(x, max_length=6) == "[1,..."


def test_default_level():
    logger.set_verbosity(0)

    assert logger.log.getEffectiveLevel() == logger.NOTICE
    assert logging.getLevelName(logger.NOTICE) == "NOTICE"


def test_verbosity_levels():
    logger.set_verbosity(1)
    assert logger.log.getEffectiveLevel() == logging.INFO

    logger.set_verbosity(2)
    assert logger.log.getEffectiveLevel() == logging.DEBUG

    logger.set_verbosity(5)
    assert logger.log.getEffectiveLevel() == logging.DEBUG

    logger.set_verbosity(-1)
    assert logger.log.getEffectiveLevel() == logger.NOTICE


def test_notice(caplog):
    logger.set_verbosity(0)

    logger.notice("forcing cache mode")
    logger.log.info("hidden")

    assert "forcing cache mode" in caplog.text
    assert "hidden" not in caplog.text
