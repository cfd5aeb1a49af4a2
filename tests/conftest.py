"""
Shared fixtures for the test suite.

External tools are replaced by a fake command runner so no CLI is needed.
"""

import pytest

from services.tools.command import CommandResult, CommandRunner


class FakeCommandRunner(CommandRunner):
    """
    CommandRunner returning canned results by command prefix.

    Response values may be an int return code, a (returncode, stdout) tuple,
    a CommandResult, an exception instance to raise, or a callable taking
    the command tuple and returning one of those.
    """

    def __init__(self, responses=None, cwd=None):
        super().__init__(cwd=cwd)
        self.responses = {tuple(k): v for k, v in (responses or {}).items()}
        self.calls = []
        self.inputs = []

    def run(self, command, env=None, timeout=None, input_text=None):
        cmd = tuple(str(part) for part in command)
        self.calls.append(cmd)
        self.inputs.append(input_text)

        for prefix in sorted(self.responses, key=len, reverse=True):
            if cmd[:len(prefix)] == prefix:
                return self._to_result(cmd, self.responses[prefix])
        return CommandResult(cmd, 0)

    def _to_result(self, cmd, response):
        if callable(response):
            response = response(cmd)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, CommandResult):
            return response
        if isinstance(response, tuple):
            returncode, stdout = response
            return CommandResult(cmd, returncode, stdout=stdout)
        return CommandResult(cmd, int(response))

    def called(self, *prefix) -> bool:
        return any(call[:len(prefix)] == prefix for call in self.calls)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def fake_runner():
    return FakeCommandRunner()


@pytest.fixture
def fake_clock():
    return FakeClock()
