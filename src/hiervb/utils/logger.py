#########################################################################################
##
##                                  LOGGER MANAGER
##                                 (utils/logger.py)
##
##         Process-wide manager for the package logger hierarchy. All modules
##         request their logger here so that level and handler configuration
##         happens in exactly one place.
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import logging


# CONSTANTS =============================================================================

ROOT_LOGGER_NAME = "hiervb"

DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


# CLASS =================================================================================

class LoggerManager:
    """Singleton manager for the ``hiervb`` logger hierarchy.

    Every call to ``LoggerManager()`` returns the same instance. The first
    :meth:`get_logger` call configures the root package logger with a single
    stream handler unless :meth:`configure` was called explicitly before.

    Example
    -------
    .. code-block:: python

        from hiervb import LoggerManager

        LoggerManager().configure(level="DEBUG")
        logger = LoggerManager().get_logger(__name__)
        logger.info("hello")
    """

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance


    def __init__(self):
        if self._initialized:
            return

        self._configured = False
        self._root_name = ROOT_LOGGER_NAME
        self._initialized = True


    @property
    def root(self) -> logging.Logger:
        """The package root logger."""
        return logging.getLogger(self._root_name)


    def configure(self, level: str | int = "INFO", fmt: str = DEFAULT_FORMAT) -> None:
        """Set the root level and attach a stream handler if none exists.

        Parameters
        ----------
        level : str or int
            Logging level name (``"DEBUG"``, ``"INFO"``, ...) or number.
        fmt : str
            Format string for the stream handler.
        """
        root = self.root
        root.setLevel(self._resolve_level(level))

        if not root.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter(fmt))
            root.addHandler(handler)

        self._configured = True


    def set_level(self, level: str | int) -> None:
        """Change the level of the package root logger."""
        self.root.setLevel(self._resolve_level(level))


    def get_logger(self, name: str) -> logging.Logger:
        """Return a logger below the package root.

        Names that already start with the package root are used as is; any
        other name is nested under it (``"__main__"`` becomes ``"hiervb.main"``).
        """
        if not self._configured:
            self.configure()

        if name == "__main__":
            full_name = f"{self._root_name}.main"
        elif name == self._root_name or name.startswith(self._root_name + "."):
            full_name = name
        else:
            full_name = f"{self._root_name}.{name}"

        return logging.getLogger(full_name)


    @staticmethod
    def _resolve_level(level: str | int) -> int:
        if isinstance(level, int):
            return level
        resolved = logging.getLevelName(str(level).upper())
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown logging level '{level}'")
        return resolved
