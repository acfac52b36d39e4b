"""Shared pytest fixtures."""

import logging

import pytest

from volback.logging_config import ROOT_LOGGER_NAME


@pytest.fixture(autouse=True)
def reset_volback_logger():
    """Undo configure_logging() so caplog sees records in every test."""
    yield
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
