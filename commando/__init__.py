import sys as _sys

MIN_PYTHON_VERSION = (3, 8, 1)

__all__ = ["MIN_PYTHON_VERSION", "__version__"]

if _sys.version_info < MIN_PYTHON_VERSION:
    print(
        f"Python {'.'.join(map(str, MIN_PYTHON_VERSION))} is required to run Commando, but you "
        f"have {_sys.version}! Please update Python."
    )
    _sys.exit(78)


def _update_logger_class():
    from red_commons.logging import maybe_update_logger_class

    maybe_update_logger_class()


# Loggers made by `red_commons.logging.getLogger()` need the `trace` and `verbose` levels,
# so this has to run before any submodule is imported.
_update_logger_class()

__version__ = "1.0.0.dev1"
