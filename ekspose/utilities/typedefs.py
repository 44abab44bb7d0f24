"""
Rudimentary type [re-]definitions for cross-versioned Python & mypy.

Some stdlib classes are generics in the type-sheds,
but are not subscriptable at runtime in older Pythons.
"""
import logging
from typing import TYPE_CHECKING, Any, Union

if TYPE_CHECKING:
    LoggerAdapter = logging.LoggerAdapter[Any]
else:
    LoggerAdapter = logging.LoggerAdapter

# As publicly exposed: we only promise that it is based on one of the built-in loggable classes.
Logger = Union[logging.Logger, LoggerAdapter]
