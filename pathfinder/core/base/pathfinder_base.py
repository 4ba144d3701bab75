"""Pathfinder class. Provides unified configuration, logging and context management."""

import inspect
import logging
import time
import traceback
from abc import ABC, ABCMeta
from functools import wraps
from typing import Callable, Optional

from pathfinder.core.config import CoreConfig, SettingsLike
from pathfinder.core.logging.logger import get_logger
from pathfinder.core.utils import ifnone

_LOGGER_PARAM_NAMES = {
    "log_dir",
    "logger_level",
    "stream_level",
    "file_level",
    "file_mode",
    "propagate",
    "max_bytes",
    "backup_count",
    "use_structlog",
    "render_json",
    "context",
}


class PathfinderMeta(type):
    """Metaclass for Pathfinder class.

    The PathfinderMeta metaclass enables classes deriving from Pathfinder to automatically use the same default logger
    within class methods as it does within instance methods::

        from pathfinder.core import Pathfinder

        class MyClass(Pathfinder):
            def instance_method(self):
                self.logger.info(f"Using logger: {self.logger.name}")  # pathfinder.my_module.MyClass

            @classmethod
            def class_method(cls):
                cls.logger.info(f"Using logger: {cls.logger.name}")  # pathfinder.my_module.MyClass
    """

    def __init__(cls, name, bases, attr_dict):
        super().__init__(name, bases, attr_dict)
        cls._logger = None
        cls._config = None

    @property
    def logger(cls):
        if cls._logger is None:
            cls._logger = get_logger(cls.unique_name)
        return cls._logger

    @logger.setter
    def logger(cls, new_logger):
        cls._logger = new_logger

    @property
    def unique_name(self) -> str:
        return self.__module__ + "." + self.__name__

    @property
    def config(cls):
        if cls._config is None:
            cls._config = CoreConfig()
        return cls._config

    @config.setter
    def config(cls, new_config):
        cls._config = new_config


class Pathfinder(metaclass=PathfinderMeta):
    """Base class for all Pathfinder core classes.

    The Pathfinder class adds a default context manager, configuration and logging. All classes that derive from
    Pathfinder can be used as context managers and log with a unified format under the ``pathfinder`` hierarchy.
    """

    def __init__(self, suppress: bool = False, *, config_overrides: SettingsLike | None = None, **kwargs):
        """
        Initialize the Pathfinder object.

        Args:
            suppress: Whether to suppress exceptions in context manager use.
            config_overrides: Additional settings to override the default config.
            **kwargs: Logger-related kwargs are passed to `get_logger`. Valid logger kwargs: log_dir, logger_level,
                stream_level, file_level, file_mode, propagate, max_bytes, backup_count, use_structlog, render_json,
                context.
        """
        self.config = CoreConfig(config_overrides)
        remaining_kwargs = {k: v for k, v in kwargs.items() if k not in _LOGGER_PARAM_NAMES}
        try:
            super().__init__(**remaining_kwargs)
        except TypeError:
            super().__init__()

        self.suppress = suppress
        logger_kwargs = {k: v for k, v in kwargs.items() if k in _LOGGER_PARAM_NAMES}
        self.logger = get_logger(self.unique_name, **logger_kwargs)

    @property
    def unique_name(self) -> str:
        return self.__module__ + "." + type(self).__name__

    @property
    def name(self) -> str:
        return type(self).__name__

    def __enter__(self):
        self.logger.debug(f"Initializing {self.name} as a context manager.")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.logger.debug(f"Exiting context manager for {self.name}.")
        if exc_type is not None:
            info = (exc_type, exc_val, exc_tb)
            self.logger.exception("Exception occurred", exc_info=info)
            return self.suppress
        return False

    @classmethod
    def autolog(
        cls,
        log_level=logging.DEBUG,
        prefix_formatter: Optional[Callable] = None,
        suffix_formatter: Optional[Callable] = None,
        exception_formatter: Optional[Callable] = None,
        include_duration: bool = True,
    ):
        """Decorator that adds logger.log calls to the decorated method before and after the method is called.

        By default, the autolog decorator logs the method name, arguments and keyword arguments before the method is
        called, and the method name and result after the method completes. Exceptions are logged and re-raised.

        The decorator expects a logger at ``self.logger`` and hence can only be used on methods of Pathfinder
        subclasses (or classes that have a logger attribute).

        Args:
            log_level: The log_level passed to logger.log().
            prefix_formatter: Callable(function, args, kwargs) -> str, logged before the call.
            suffix_formatter: Callable(function, result) -> str, logged after the call.
            exception_formatter: Callable(function, error, stack_trace) -> str, logged on error.
            include_duration: If True, append the duration of the wrapped method to the completion record.

        Example::

            from pathfinder.core import Pathfinder

            class Calculator(Pathfinder):
                @Pathfinder.autolog()
                def divide(self, arg1, arg2):
                    return arg1 / arg2
        """
        prefix_formatter = ifnone(
            prefix_formatter,
            default=lambda function, args, kwargs: f"Calling {function.__name__} with args: {args} and kwargs: {kwargs}",
        )
        suffix_formatter = ifnone(
            suffix_formatter,
            default=lambda function, result: f"Finished {function.__name__} with result: {result}",
        )
        exception_formatter = ifnone(
            exception_formatter,
            default=lambda function, e, stack_trace: f"{function.__name__} failed due to {e.__class__.__name__}: {e}\n{stack_trace}",
        )

        def _finished(function, result, started_at):
            msg = suffix_formatter(function, result)
            if include_duration:
                msg = f"{msg} | duration_ms={(time.perf_counter() - started_at) * 1000.0:.2f}"
            return msg

        def decorator(function):
            if inspect.iscoroutinefunction(function):

                @wraps(function)
                async def wrapper(self, *args, **kwargs):
                    self.logger.log(log_level, prefix_formatter(function, args, kwargs))
                    started_at = time.perf_counter()
                    try:
                        result = await function(self, *args, **kwargs)
                    except Exception as e:
                        self.logger.error(exception_formatter(function, e, traceback.format_exc()))
                        raise
                    self.logger.log(log_level, _finished(function, result, started_at))
                    return result

            else:

                @wraps(function)
                def wrapper(self, *args, **kwargs):
                    self.logger.log(log_level, prefix_formatter(function, args, kwargs))
                    started_at = time.perf_counter()
                    try:
                        result = function(self, *args, **kwargs)
                    except Exception as e:
                        self.logger.error(exception_formatter(function, e, traceback.format_exc()))
                        raise
                    self.logger.log(log_level, _finished(function, result, started_at))
                    return result

            return wrapper

        return decorator


class PathfinderABCMeta(PathfinderMeta, ABCMeta):
    """Metaclass that combines PathfinderMeta and ABCMeta.

    Python only allows a class to have one metaclass, so this combined metaclass allows classes to inherit from both
    Pathfinder and ABC without a metaclass conflict.
    """

    pass


class PathfinderABC(Pathfinder, ABC, metaclass=PathfinderABCMeta):
    """Abstract base class combining Pathfinder functionality with ABC support.

    Use this class instead of Pathfinder when you need to define abstract methods or properties in your class.

    Example::

        from abc import abstractmethod
        from pathfinder.core import PathfinderABC

        class RouteProvider(PathfinderABC):
            @abstractmethod
            def compute(self, origin, destination):
                raise NotImplementedError
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
