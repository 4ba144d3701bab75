import logging

import pytest

from pathfinder.core import Pathfinder, PathfinderABC, ServiceUnavailableError


class Calculator(Pathfinder):
    @Pathfinder.autolog()
    def divide(self, a, b):
        return a / b


class TestPathfinderBase:
    def test_logger_name(self):
        calc = Calculator()
        assert calc.logger.name == f"pathfinder.{__name__}.Calculator"
        assert Calculator.logger.name == calc.logger.name

    def test_config_is_available(self):
        assert Calculator().config["PATHFINDER_QUEUE"]["BACKEND"] == "local"

    def test_config_overrides(self):
        calc = Calculator(config_overrides={"PATHFINDER_QUEUE": {"BACKEND": "redis"}})
        assert calc.config["PATHFINDER_QUEUE"]["BACKEND"] == "redis"

    def test_autolog_logs_call_and_result(self, caplog):
        assert Calculator().divide(6, 3) == 2
        messages = [r.getMessage() for r in caplog.records]
        assert any("Calling divide with args: (6, 3)" in m for m in messages)
        assert any("Finished divide with result: 2" in m and "duration_ms=" in m for m in messages)

    def test_autolog_logs_and_reraises(self, caplog):
        with pytest.raises(ZeroDivisionError):
            Calculator().divide(1, 0)
        assert any(r.levelno == logging.ERROR and "divide failed" in r.getMessage() for r in caplog.records)

    def test_context_manager_does_not_suppress_by_default(self):
        with pytest.raises(ServiceUnavailableError):
            with Calculator():
                raise ServiceUnavailableError()

    def test_context_manager_suppress(self, caplog):
        with Calculator(suppress=True):
            raise ServiceUnavailableError()
        assert any("Exception occurred" in r.getMessage() for r in caplog.records)


def test_abstract_methods_are_enforced():
    from abc import abstractmethod

    class Provider(PathfinderABC):
        @abstractmethod
        def compute(self):
            raise NotImplementedError

    with pytest.raises(TypeError):
        Provider()
