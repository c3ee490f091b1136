"""
Tests for the executor, privilege, distribution and package adapters.
"""

from pathlib import Path

import pytest

from igor.adapters.base import CommandResult
from igor.adapters.distro import detect_distribution, family_for, parse_os_release
from igor.adapters.mock import MockExecutor, MockPackageManager, error_result, fail_result, ok_result
from igor.adapters.packages import BACKENDS, CommandPackageManager
from igor.adapters.privilege import SAFE_PATH, ElevationMethod, PrivilegeManager
from igor.adapters.shell.executor import SubprocessExecutor
from igor.core.errors import CommandError, ErrorKind, PackageError, PrivilegeError
from igor.core.models.distro import DistroFamily
from igor.core.models.package import RemoveOptions


def _which(*available):
    return lambda tool: f"/usr/bin/{tool}" if tool in available else None


# ── CommandResult ────────────────────────────────────────────────────


class TestCommandResult:
    def test_ok(self):
        r = CommandResult(command="lsmod", stdout="a\n\n  b \n")
        assert r.ok
        assert not r.failed
        assert r.stdout_lines == ["a", "b"]
        assert r.error_message == ""

    def test_nonzero_uses_stderr(self):
        r = CommandResult(command="modprobe", args=["-r", "nvidia"], exit_code=1, stderr="in use\n")
        assert r.failed
        assert r.error_message == "in use"
        assert r.command_line == "modprobe -r nvidia"

    def test_nonzero_without_stderr(self):
        r = CommandResult(command="rm", exit_code=2)
        assert r.error_message == "rm exited with code 2"

    def test_error_wins(self):
        r = CommandResult(command="x", exit_code=-1, error=CommandError("timed out", ErrorKind.TIMEOUT))
        assert r.failed
        assert r.error.is_timeout
        assert r.error_message == "timed out"


# ── SubprocessExecutor ───────────────────────────────────────────────


class TestSubprocessExecutor:
    def test_captures_stdout(self):
        r = SubprocessExecutor().run("echo", "hello")
        assert r.ok
        assert r.stdout == "hello\n"
        assert r.args == ["hello"]
        assert r.duration >= 0

    def test_nonzero_is_data(self):
        r = SubprocessExecutor().run("false")
        assert r.failed
        assert r.exit_code == 1
        assert r.error is None

    def test_missing_command(self):
        r = SubprocessExecutor().run("igor-no-such-command-xyz")
        assert r.failed
        assert r.error.kind == ErrorKind.EXECUTION

    def test_timeout(self):
        r = SubprocessExecutor().run("sleep", "5", timeout=0.2)
        assert r.failed
        assert r.error.kind == ErrorKind.TIMEOUT

    def test_input(self):
        r = SubprocessExecutor().execute_with_input(b"blacklist nouveau\n", "cat")
        assert r.stdout == "blacklist nouveau\n"

    def test_elevated_without_privilege_runs_plain(self):
        r = SubprocessExecutor().execute_elevated("true")
        assert r.ok

    def test_elevated_rewrites_argv(self, monkeypatch):
        seen = {}

        def fake_run(argv, **kwargs):
            seen["argv"] = argv
            seen["env"] = kwargs["env"]

            class Proc:
                returncode = 0
                stdout = b""
                stderr = b""
            return Proc()

        monkeypatch.setattr("igor.adapters.shell.executor.subprocess.run", fake_run)
        monkeypatch.setenv("LD_PRELOAD", "/tmp/evil.so")
        pm = PrivilegeManager(is_root=False, which=_which("sudo"))
        r = SubprocessExecutor(privilege=pm).run("modprobe", "-r", "nvidia", elevated=True)
        assert r.ok
        assert r.command == "modprobe"
        assert seen["argv"] == ["/usr/bin/sudo", "-n", "modprobe", "-r", "nvidia"]
        assert "LD_PRELOAD" not in seen["env"]
        assert seen["env"]["PATH"] == SAFE_PATH


# ── Privilege ────────────────────────────────────────────────────────


class TestPrivilegeManager:
    def test_detection_order(self):
        assert PrivilegeManager(is_root=False, which=_which("sudo", "doas")).method == ElevationMethod.SUDO
        assert PrivilegeManager(is_root=False, which=_which("pkexec", "doas")).method == ElevationMethod.PKEXEC
        assert PrivilegeManager(is_root=False, which=_which("doas")).method == ElevationMethod.DOAS

    def test_root_unchanged(self):
        pm = PrivilegeManager(is_root=True, which=_which("sudo"))
        assert pm.elevated_command("rm", ["-f", "/etc/x"]) == ("rm", ["-f", "/etc/x"])

    def test_sudo_non_interactive(self):
        pm = PrivilegeManager(is_root=False, which=_which("sudo"))
        assert pm.elevated_command("rm", ["-f", "/etc/x"]) == ("/usr/bin/sudo", ["-n", "rm", "-f", "/etc/x"])

    def test_pkexec(self):
        pm = PrivilegeManager(is_root=False, which=_which("pkexec"))
        assert pm.elevated_command("rm", ["/etc/x"]) == ("/usr/bin/pkexec", ["rm", "/etc/x"])

    def test_require_root(self):
        PrivilegeManager(is_root=True, which=_which()).require_root()
        PrivilegeManager(is_root=False, which=_which("doas")).require_root()
        pm = PrivilegeManager(is_root=False, which=_which())
        assert not pm.can_elevate
        with pytest.raises(PrivilegeError):
            pm.require_root()

    def test_sanitized_env(self):
        env = PrivilegeManager(is_root=True).sanitized_env({
            "HOME": "/root",
            "PATH": "/tmp/bin",
            "LD_PRELOAD": "x.so",
            "LD_LIBRARY_PATH": "/tmp",
            "TMPDIR": "/tmp",
        })
        assert env == {"HOME": "/root", "PATH": SAFE_PATH}


# ── Distribution ─────────────────────────────────────────────────────


UBUNTU = """\
NAME="Ubuntu"
VERSION_ID="24.04"
VERSION_CODENAME=noble
ID=ubuntu
ID_LIKE=debian
PRETTY_NAME="Ubuntu 24.04.1 LTS"
"""


class TestDistro:
    def test_ubuntu(self):
        d = parse_os_release(UBUNTU)
        assert d.id == "ubuntu"
        assert d.family == DistroFamily.DEBIAN
        assert d.version_id == "24.04"
        assert d.version_codename == "noble"
        assert d.pretty_name == "Ubuntu 24.04.1 LTS"
        assert d.id_like == ["debian"]

    @pytest.mark.parametrize("content,family", [
        ('ID=fedora\nVERSION_ID=40\n', DistroFamily.RHEL),
        ('ID="rocky"\nID_LIKE="rhel centos fedora"\n', DistroFamily.RHEL),
        ("ID=arch\n", DistroFamily.ARCH),
        ('ID="opensuse-tumbleweed"\nID_LIKE="opensuse suse"\n', DistroFamily.SUSE),
        ("# comment\nID=gentoo\n", DistroFamily.UNKNOWN),
    ])
    def test_families(self, content, family):
        assert parse_os_release(content).family == family

    def test_id_like_fallback(self):
        assert family_for("somederivative", ["ubuntu", "debian"]) == DistroFamily.DEBIAN
        assert family_for("opensuse-microos") == DistroFamily.SUSE
        assert family_for("Fedora") == DistroFamily.RHEL

    def test_detect_from_first_readable(self, tmp_path: Path):
        second = tmp_path / "os-release"
        second.write_text("ID=manjaro\nID_LIKE=arch\n")
        d = detect_distribution((tmp_path / "missing", second))
        assert d.id == "manjaro"
        assert d.family == DistroFamily.ARCH

    def test_detect_unreadable(self, tmp_path: Path):
        d = detect_distribution((tmp_path / "missing",))
        assert d.family == DistroFamily.UNKNOWN


# ── Package Managers ─────────────────────────────────────────────────


DPKG_OUT = (
    "nvidia-driver-550\t550.54.14-0ubuntu1\tinstall ok installed\n"
    "vim\t2:9.1.0016-1\tinstall ok installed\n"
    "nvidia-old\t470.1\tdeinstall ok config-files\n"
)


class TestCommandPackageManager:
    def test_for_family(self):
        for family, backend in BACKENDS.items():
            pm = CommandPackageManager.for_family(MockExecutor(), family)
            assert pm.name == backend.name
            assert pm.family == family

    def test_unknown_family(self):
        with pytest.raises(PackageError):
            CommandPackageManager.for_family(MockExecutor(), DistroFamily.UNKNOWN)

    def test_dpkg_listing(self):
        ex = MockExecutor()
        ex.set_response("dpkg-query", ok_result(DPKG_OUT))
        pkgs = CommandPackageManager.for_family(ex, DistroFamily.DEBIAN).list_installed()
        assert [p.name for p in pkgs] == ["nvidia-driver-550", "vim"]
        assert pkgs[0].version == "550.54.14-0ubuntu1"
        assert not ex.calls[0].elevated

    def test_rpm_listing(self):
        ex = MockExecutor()
        ex.set_response("rpm", ok_result("akmod-nvidia\t550.54-1.fc40\tx86_64\n\n"))
        pkgs = CommandPackageManager.for_family(ex, DistroFamily.RHEL).list_installed()
        assert len(pkgs) == 1
        assert pkgs[0].architecture == "x86_64"
        assert ex.calls[0].args[0] == "-qa"

    def test_pacman_listing(self):
        ex = MockExecutor()
        ex.set_response("pacman -Q", ok_result("nvidia 550.54-1\nnvidia-utils 550.54-1\n"))
        pkgs = CommandPackageManager.for_family(ex, DistroFamily.ARCH).list_installed()
        assert [p.name for p in pkgs] == ["nvidia", "nvidia-utils"]

    def test_listing_failure(self):
        ex = MockExecutor(default=fail_result(stderr="database locked"))
        with pytest.raises(PackageError, match="database locked"):
            CommandPackageManager.for_family(ex, DistroFamily.DEBIAN).list_installed()

    @pytest.mark.parametrize("family,options,expected", [
        (DistroFamily.DEBIAN, RemoveOptions(), "apt-get remove -y --auto-remove -- a b"),
        (DistroFamily.DEBIAN, RemoveOptions(purge=True, auto_remove=False), "apt-get purge -y -- a b"),
        (DistroFamily.RHEL, RemoveOptions(), "dnf remove -y -- a b"),
        (DistroFamily.ARCH, RemoveOptions(purge=True), "pacman -Rns --noconfirm -- a b"),
        (DistroFamily.ARCH, RemoveOptions(), "pacman -Rs --noconfirm -- a b"),
        (DistroFamily.ARCH, RemoveOptions(auto_remove=False, no_confirm=False), "pacman -R -- a b"),
        (DistroFamily.SUSE, RemoveOptions(), "zypper --non-interactive remove --clean-deps -- a b"),
    ])
    def test_remove_command_line(self, family, options, expected):
        ex = MockExecutor()
        CommandPackageManager.for_family(ex, family).remove(["a", "b"], options)
        assert ex.calls[0].command_line == expected
        assert ex.calls[0].elevated

    def test_dash_leading_name_is_not_an_option(self):
        ex = MockExecutor()
        CommandPackageManager.for_family(ex, DistroFamily.RHEL).remove(["-x", "nvidia-driver"])
        assert ex.calls[0].args == ["remove", "-y", "--", "-x", "nvidia-driver"]

    def test_remove_nothing(self):
        ex = MockExecutor()
        CommandPackageManager.for_family(ex, DistroFamily.DEBIAN).remove([])
        assert ex.call_count() == 0

    def test_remove_failure(self):
        ex = MockExecutor(default=error_result("cannot execute apt-get"))
        with pytest.raises(PackageError) as exc:
            CommandPackageManager.for_family(ex, DistroFamily.DEBIAN).remove(["a"])
        assert exc.value.packages == ["a"]


# ── Mocks ────────────────────────────────────────────────────────────


class TestMocks:
    def test_executor_lookup_order(self):
        ex = MockExecutor()
        ex.set_response("modprobe", fail_result())
        ex.set_response("modprobe -r nvidia", ok_result("line"))
        assert ex.run("modprobe", "-r", "nvidia").stdout == "line"
        assert ex.run("modprobe", "-r", "nvidia_drm").failed
        assert ex.run("lsmod").ok
        assert ex.call_count() == 3
        assert ex.call_count("modprobe") == 2

    def test_executor_reset(self):
        ex = MockExecutor()
        ex.set_response("x", fail_result())
        ex.run("x")
        ex.reset()
        assert ex.call_count() == 0
        assert ex.run("x").ok

    def test_package_manager_records(self):
        pm = MockPackageManager(["nvidia-driver-550", "vim"])
        pm.fail_package("vim")
        pm.remove(["nvidia-driver-550"])
        with pytest.raises(PackageError):
            pm.remove(["vim"])
        assert pm.removed == ["nvidia-driver-550"]
        assert [p.name for p in pm.list_installed()] == ["vim"]
