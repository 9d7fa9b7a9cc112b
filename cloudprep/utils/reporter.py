"""
Progress reporting for long-running cloud preparation steps.
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional


class Reporter(ABC):
    """Narrates step progress. Implementations must not change control flow."""

    @abstractmethod
    def started(self, message: str, *args) -> None:
        pass

    @abstractmethod
    def succeeded(self, message: str, *args) -> None:
        pass

    @abstractmethod
    def failed(self, err: Optional[BaseException] = None) -> None:
        pass

    @abstractmethod
    def warning(self, message: str, *args) -> None:
        pass

    def error(self, err: BaseException, message: str, *args) -> BaseException:
        """Report a failure and hand the error back so callers can ``raise reporter.error(...)``."""
        self.failed(err)
        if message:
            self.warning(message, *args)
        return err


class LoggingReporter(Reporter):
    """Reporter that writes every event to a logger."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(f"{__name__}.LoggingReporter")

    def started(self, message: str, *args) -> None:
        self.logger.info(message, *args)

    def succeeded(self, message: str, *args) -> None:
        self.logger.info(message, *args)

    def failed(self, err: Optional[BaseException] = None) -> None:
        if err is not None:
            self.logger.error(f"Failed: {err}")
        else:
            self.logger.error("Failed")

    def warning(self, message: str, *args) -> None:
        self.logger.warning(message, *args)

