import logging

import pytest


@pytest.fixture(autouse=True)
def _reset_autobackup_logging():
    yield
    logger = logging.getLogger("autobackup")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
