"""
Tests for tool, artifact and notification services.

External CLIs are replaced by FakeCommandRunner.
"""

import json
import subprocess
import sys
import threading
import time

import pytest
import requests

from conftest import FakeCommandRunner
from domain import (
    ArchiveError,
    ArtifactArchiveRequest,
    ConfigurationError,
    CredentialsConfig,
    ImageConfig,
    InstallConfig,
    SecurityScanConfig,
    StageRecord,
    StageStatus,
    TestConfig,
    ToolError,
)
from orchestration import Outcome, RunContext
from services.artifacts import ArtifactArchiver
from services.notifications import WebhookNotifier
from services.tools import (
    CommandRunner,
    ContainerEngine,
    CredentialProvider,
    Credentials,
    PackageManager,
    TestRunner,
    VulnerabilityScanner,
)
from services.tools.scanner import count_severities

TRIVY_REPORT = {
    "Results": [
        {"Target": "package-lock.json", "Vulnerabilities": [
            {"VulnerabilityID": "CVE-1", "Severity": "HIGH"},
            {"VulnerabilityID": "CVE-2", "Severity": "LOW"},
        ]},
        {"Target": "Dockerfile", "Vulnerabilities": None},
    ]
}

NPM_AUDIT_REPORT = {
    "metadata": {"vulnerabilities": {"info": 0, "low": 1, "moderate": 2, "high": 0, "critical": 0, "total": 3}}
}


class FakeProcess:
    """Stand-in for subprocess.Popen."""

    def __init__(self, returncode=0, stdout="", stderr="", hangs=False):
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.hangs = hangs
        self.kwargs = {}
        self.input = None
        self.killed = False
        self.terminated = False

    def __call__(self, cmd, **kwargs):
        self.kwargs = kwargs
        return self

    def communicate(self, input=None, timeout=None):
        self.input = input
        if self.hangs and not self.killed:
            raise subprocess.TimeoutExpired("cmd", timeout)
        return self.stdout, self.stderr

    def poll(self):
        return None

    def kill(self):
        self.killed = True

    def terminate(self):
        self.terminated = True


class TestCommandRunner:
    """Tests for CommandRunner error mapping and cancellation."""

    def test_missing_executable_raises_tool_error(self, monkeypatch):
        def fake_popen(*args, **kwargs):
            raise FileNotFoundError()

        monkeypatch.setattr(subprocess, "Popen", fake_popen)
        with pytest.raises(ToolError, match="executable not found"):
            CommandRunner().run(["trivy", "fs", "."])

    def test_timeout_kills_process_and_raises(self, monkeypatch):
        process = FakeProcess(hangs=True)
        monkeypatch.setattr(subprocess, "Popen", process)

        with pytest.raises(ToolError, match="timed out after 5s"):
            CommandRunner().run(["npm", "ci"], timeout=5)
        assert process.killed

    def test_check_raises_on_non_zero_exit(self, monkeypatch):
        monkeypatch.setattr(subprocess, "Popen", FakeProcess(2, stderr="warn\nfatal: bad thing\n"))

        with pytest.raises(ToolError, match="exit code 2: fatal: bad thing") as exc_info:
            CommandRunner().check(["docker", "build", "."])
        assert exc_info.value.returncode == 2

    def test_passes_cwd_env_and_input(self, monkeypatch):
        process = FakeProcess(stdout="ok")
        monkeypatch.setattr(subprocess, "Popen", process)

        result = CommandRunner(cwd="/work").run(["echo"], env={"A": "1"}, input_text="secret")

        assert result.ok and result.stdout == "ok"
        assert process.kwargs["cwd"] == "/work"
        assert process.kwargs["env"] == {"A": "1"}
        assert process.kwargs["stdin"] == subprocess.PIPE
        assert process.input == "secret"

    def test_cancelled_thread_cannot_start_commands(self, monkeypatch):
        monkeypatch.setattr(subprocess, "Popen", FakeProcess())
        runner = CommandRunner()
        errors = []

        def work():
            try:
                runner.run(["docker", "push", "img"])
            except ToolError as e:
                errors.append(str(e))

        worker = threading.Thread(target=work)
        runner.cancel(worker)
        worker.start()
        worker.join(5)

        assert errors and "cancelled" in errors[0]
        assert runner.run(["docker", "image", "prune", "-f"]).ok

    def test_cancel_terminates_running_command(self, tmp_path):
        runner = CommandRunner(cwd=str(tmp_path))
        started = threading.Event()
        errors = []

        def work():
            started.set()
            try:
                runner.run([sys.executable, "-c", "import time; time.sleep(10)"])
                runner.run([sys.executable, "-c", "open('pushed', 'w').close()"])
            except ToolError as e:
                errors.append(str(e))

        worker = threading.Thread(target=work)
        worker.start()
        started.wait(5)
        time.sleep(0.5)
        runner.cancel(worker)
        worker.join(5)

        assert not worker.is_alive()
        assert errors and "cancelled" in errors[0]
        assert not (tmp_path / "pushed").exists()


class TestPackageManagerAndTests:
    """Tests for PackageManager and TestRunner."""

    def test_strict_install_uses_strict_command(self):
        runner = FakeCommandRunner()
        assert PackageManager(runner, InstallConfig()).install(lockfile_strict=True)
        assert runner.calls == [("npm", "ci")]

    def test_relaxed_install_uses_relaxed_command(self):
        runner = FakeCommandRunner()
        PackageManager(runner, InstallConfig()).install(lockfile_strict=False)
        assert runner.calls == [("npm", "install")]

    def test_failed_install_returns_false(self):
        runner = FakeCommandRunner({("npm", "ci"): 1})
        assert not PackageManager(runner, InstallConfig()).install(lockfile_strict=True)

    def test_test_runner_reports_status(self):
        assert TestRunner(FakeCommandRunner(), TestConfig()).run()
        assert not TestRunner(FakeCommandRunner({("npm", "test"): 1}), TestConfig()).run()


class TestVulnerabilityScanner:
    """Tests for VulnerabilityScanner and its fallback."""

    def test_count_trivy_report(self):
        assert count_severities(TRIVY_REPORT) == {"HIGH": 1, "LOW": 1}

    def test_count_npm_audit_report(self):
        assert count_severities(NPM_AUDIT_REPORT) == {"LOW": 1, "MEDIUM": 2}

    def test_unknown_report_fails(self):
        with pytest.raises(ValueError, match="Unrecognized"):
            count_severities({"something": []})

    def test_primary_report_file_is_used(self, tmp_path):
        def trivy(cmd):
            (tmp_path / "security-report.json").write_text(json.dumps(TRIVY_REPORT))
            return 0

        runner = FakeCommandRunner({("trivy",): trivy}, cwd=str(tmp_path))
        report = VulnerabilityScanner(runner, SecurityScanConfig()).scan("HIGH")

        assert report.tool == "trivy"
        assert not report.used_fallback
        assert report.blocking_count == 1
        assert not report.passed
        assert "--output" in runner.calls[0]
        assert "security-report.json" in runner.calls[0]
        assert not runner.called("npm")

    def test_threshold_above_findings_passes(self, tmp_path):
        def trivy(cmd):
            (tmp_path / "security-report.json").write_text(json.dumps(TRIVY_REPORT))
            return 0

        runner = FakeCommandRunner({("trivy",): trivy}, cwd=str(tmp_path))

        report = VulnerabilityScanner(runner, SecurityScanConfig()).scan("CRITICAL")

        assert report.passed
        assert report.total == 2

    def test_fallback_used_when_primary_raises(self, tmp_path):
        runner = FakeCommandRunner({
            ("trivy",): ToolError(["trivy"], "executable not found"),
            ("npm", "audit"): (1, json.dumps(NPM_AUDIT_REPORT)),
        }, cwd=str(tmp_path))

        report = VulnerabilityScanner(runner, SecurityScanConfig()).scan("MEDIUM")

        assert report.used_fallback
        assert report.tool == "npm"
        assert report.blocking_count == 2
        saved = json.loads((tmp_path / "security-report.json").read_text())
        assert saved == NPM_AUDIT_REPORT

    def test_fallback_not_used_when_primary_succeeds(self, tmp_path):
        runner = FakeCommandRunner({("trivy",): (0, json.dumps({"Results": []}))}, cwd=str(tmp_path))

        report = VulnerabilityScanner(runner, SecurityScanConfig()).scan()

        assert report.passed
        assert not runner.called("npm")

    def test_unreadable_primary_report_triggers_fallback(self, tmp_path):
        runner = FakeCommandRunner({
            ("trivy",): (0, "not json"),
            ("npm", "audit"): (0, json.dumps(NPM_AUDIT_REPORT)),
        }, cwd=str(tmp_path))

        report = VulnerabilityScanner(runner, SecurityScanConfig()).scan("HIGH")

        assert report.used_fallback
        assert report.passed

    def test_stale_report_is_not_read_when_primary_crashes(self, tmp_path):
        """Test that a report from an earlier build cannot pass a crashed scan."""
        (tmp_path / "security-report.json").write_text(json.dumps({"Results": []}))
        runner = FakeCommandRunner({
            ("trivy",): (2, ""),
            ("npm", "audit"): (1, json.dumps(NPM_AUDIT_REPORT)),
        }, cwd=str(tmp_path))

        report = VulnerabilityScanner(runner, SecurityScanConfig()).scan("MEDIUM")

        assert report.used_fallback
        assert not report.passed
        assert runner.called("npm", "audit")

    def test_crashing_primary_without_fallback_raises(self, tmp_path):
        runner = FakeCommandRunner({("trivy",): (2, "")}, cwd=str(tmp_path))
        config = SecurityScanConfig(fallback_command=None)

        with pytest.raises(ToolError, match="exit code 2"):
            VulnerabilityScanner(runner, config).scan()

    def test_primary_without_fresh_report_raises(self, tmp_path):
        (tmp_path / "security-report.json").write_text(json.dumps({"Results": []}))
        runner = FakeCommandRunner({("trivy",): (0, "")}, cwd=str(tmp_path))
        config = SecurityScanConfig(fallback_command=None)

        with pytest.raises(ToolError, match="no report produced"):
            VulnerabilityScanner(runner, config).scan()
        assert not (tmp_path / "security-report.json").exists()

    def test_no_fallback_configured_raises(self, tmp_path):
        runner = FakeCommandRunner({("trivy",): ToolError(["trivy"], "executable not found")}, cwd=str(tmp_path))
        config = SecurityScanConfig(fallback_command=None)

        with pytest.raises(ToolError, match="executable not found"):
            VulnerabilityScanner(runner, config).scan()


class TestContainerEngine:
    """Tests for ContainerEngine."""

    def make_engine(self, runner, **overrides):
        config = ImageConfig(name="team/app", registry="registry.example.com", **overrides)
        sleeps = []
        return ContainerEngine(runner, config, sleep=sleeps.append), sleeps

    def test_wait_until_ready_polls_with_fixed_interval(self):
        attempts = iter([1, 1, 0])
        runner = FakeCommandRunner({("docker", "info"): lambda cmd: next(attempts)})
        engine, sleeps = self.make_engine(runner, daemon_interval_sec=2.0)

        assert engine.wait_until_ready(retries=5) == 3
        assert sleeps == [2.0, 2.0]

    def test_wait_until_ready_gives_up(self):
        runner = FakeCommandRunner({("docker", "info"): ToolError(["docker"], "executable not found")})
        engine, sleeps = self.make_engine(runner)

        with pytest.raises(ToolError, match="daemon not ready after 3 attempts"):
            engine.wait_until_ready(retries=3, interval_sec=1)
        assert len(sleeps) == 2

    def test_build_and_tag(self):
        runner = FakeCommandRunner()
        engine, _ = self.make_engine(runner)

        image = engine.build("42")
        alias = engine.tag(image, "latest")

        assert image == "registry.example.com/team/app:42"
        assert alias == "registry.example.com/team/app:latest"
        assert runner.calls == [
            ("docker", "build", "-t", "registry.example.com/team/app:42", "."),
            ("docker", "tag", "registry.example.com/team/app:42", "registry.example.com/team/app:latest"),
        ]

    def test_build_failure_raises(self):
        runner = FakeCommandRunner({("docker", "build"): 1})
        engine, _ = self.make_engine(runner)

        with pytest.raises(ToolError):
            engine.build("42")

    def test_push_logs_in_with_password_on_stdin(self):
        runner = FakeCommandRunner()
        engine, _ = self.make_engine(runner)

        assert engine.push("registry.example.com/team/app:42", "registry.example.com", Credentials("ci", "s3cret"))
        login = runner.calls[0]
        assert login[:2] == ("docker", "login")
        assert "s3cret" not in login
        assert runner.inputs[0] == "s3cret"
        assert runner.calls[1] == ("docker", "push", "registry.example.com/team/app:42")

    def test_failed_login_skips_push(self):
        runner = FakeCommandRunner({("docker", "login"): 1})
        engine, _ = self.make_engine(runner)

        assert not engine.push("img", "registry.example.com", Credentials("ci", "bad"))
        assert not runner.called("docker", "push")


class TestCredentialProvider:
    """Tests for CredentialProvider."""

    def test_reads_configured_variables(self):
        provider = CredentialProvider(CredentialsConfig(username_env="U", password_env="P"))
        creds = provider.get({"U": "ci", "P": "pw"})

        assert creds == Credentials("ci", "pw")
        assert "pw" not in repr(creds)

    def test_missing_variables_fail(self):
        provider = CredentialProvider(CredentialsConfig())
        with pytest.raises(ConfigurationError, match="REGISTRY_PASSWORD"):
            provider.get({"REGISTRY_USERNAME": "ci"})

    def test_reads_process_environment_by_default(self, monkeypatch):
        monkeypatch.setenv("REGISTRY_USERNAME", "ci")
        monkeypatch.setenv("REGISTRY_PASSWORD", "pw")

        assert CredentialProvider(CredentialsConfig()).get() == Credentials("ci", "pw")


class TestArtifactArchiver:
    """Tests for ArtifactArchiver."""

    def test_archives_matching_files_keeping_layout(self, tmp_path):
        workspace = tmp_path / "ws"
        (workspace / "reports" / "unit").mkdir(parents=True)
        (workspace / "reports" / "unit" / "junit.xml").write_text("<testsuite/>")
        (workspace / "scan.json").write_text("{}")
        archive_dir = tmp_path / "archive"

        archiver = ArtifactArchiver(str(workspace), str(archive_dir))
        archived = archiver.archive([
            ArtifactArchiveRequest("reports/**/*.xml"),
            ArtifactArchiveRequest("scan.json"),
            ArtifactArchiveRequest("scan.json"),
        ])

        assert len(archived) == 2
        assert (archive_dir / "reports" / "unit" / "junit.xml").read_text() == "<testsuite/>"
        assert (archive_dir / "scan.json").exists()

    def test_allow_empty_request_is_fine(self, tmp_path):
        archiver = ArtifactArchiver(str(tmp_path), str(tmp_path / "archive"))

        assert archiver.archive([ArtifactArchiveRequest("coverage/**/*", allow_empty=True)]) == []

    def test_empty_match_without_allow_empty_raises_after_archiving_rest(self, tmp_path):
        (tmp_path / "build.log").write_text("log")
        archive_dir = tmp_path / "archive"
        archiver = ArtifactArchiver(str(tmp_path), str(archive_dir))

        with pytest.raises(ArchiveError, match="no artifacts matched 'dist/\\*'"):
            archiver.archive([
                ArtifactArchiveRequest("dist/*"),
                ArtifactArchiveRequest("build.log"),
            ])
        assert (archive_dir / "build.log").exists()

    def test_progress_bar(self, tmp_path):
        (tmp_path / "a.txt").write_text("a")
        archiver = ArtifactArchiver(str(tmp_path), str(tmp_path / "archive"), show_progress=True)

        assert len(archiver.archive([ArtifactArchiveRequest("*.txt")])) == 1


class FakeResponse:
    def __init__(self, status_code):
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class FakeSession:
    def __init__(self, status_code=200, error=None):
        self.status_code = status_code
        self.error = error
        self.posts = []

    def post(self, url, json=None, timeout=None):
        self.posts.append((url, json, timeout))
        if self.error:
            raise self.error
        return FakeResponse(self.status_code)


class TestWebhookNotifier:
    """Tests for WebhookNotifier."""

    def make_context(self):
        return (
            RunContext.create()
            .with_record(StageRecord("install-dependencies", StageStatus.SUCCEEDED))
            .with_record(StageRecord("run-tests", StageStatus.FAILED_NONFATAL, "3 failed"))
            .finalized(Outcome.UNSTABLE)
        )

    def test_posts_summary(self):
        session = FakeSession()
        notifier = WebhookNotifier("https://hooks.example.com/ci", "nightly", timeout=5, session=session)

        assert notifier.notify(self.make_context())
        url, payload, timeout = session.posts[0]
        assert url == "https://hooks.example.com/ci"
        assert timeout == 5
        assert payload["outcome"] == "UNSTABLE"
        assert payload["failed_stages"] == ["run-tests"]
        assert payload["run_name"] == "nightly"

    def test_http_error_returns_false(self):
        notifier = WebhookNotifier("https://hooks.example.com/ci", "nightly", session=FakeSession(500))
        assert not notifier.notify(self.make_context())

    def test_connection_error_returns_false(self):
        session = FakeSession(error=requests.ConnectionError("refused"))
        notifier = WebhookNotifier("https://hooks.example.com/ci", "nightly", session=session)
        assert not notifier.notify(self.make_context())

    def test_empty_url_fails(self):
        with pytest.raises(ValueError, match="webhook url cannot be empty"):
            WebhookNotifier("", "nightly")
