import functools
import logging
import os

from red_commons.logging import getLogger

if os.getenv("COMMANDO_INSPECT_DRIVER_QUERIES"):
    LOGGING_INVISIBLE = logging.DEBUG
else:
    LOGGING_INVISIBLE = 0

log = getLogger("commando.driver")
log.invisible = functools.partial(log.log, LOGGING_INVISIBLE)
