"""
Tests for kernel module parsing, detection, and the module manager.
"""

from pathlib import Path

import pytest

from igor.adapters.mock import MockExecutor, error_result, fail_result, ok_result
from igor.core.errors import DetectionError, ModuleError, ModuleInUseError, StepCancelledError
from igor.core.kernel.detector import KernelDetector, ProcModulesDetector, headers_package_for, kernel_release
from igor.core.kernel.manager import ModuleManager
from igor.core.kernel.modules import (
    filter_by_state,
    find_module,
    is_module_in_list,
    parse_module_line,
    parse_modules_content,
    unload_order,
    vendor_modules,
)
from igor.core.models.distro import DistroFamily

PROC_MODULES = """\
nvidia_drm 77824 4 - Live 0xffffffffc1a00000 (POE)
nvidia_modeset 1294336 8 nvidia_drm, Live 0xffffffffc1800000 (POE)
nvidia_uvm 1523712 0 - Live 0xffffffffc1600000 (POE)
nvidia 55123456 10 nvidia_modeset,nvidia_drm, Live 0x0
snd_hda_intel 57344 3 - Live 0xffffffffc0a00000
garbage line
ext4 1003520 1 - Loading 0xffffffffc0800000
"""


# ── Parsing ──────────────────────────────────────────────────────────


class TestParseModuleLine:
    def test_vendor_record(self):
        m = parse_module_line("nvidia 55123456 10 nvidia_modeset,nvidia_drm, Live 0x0")
        assert m.name == "nvidia"
        assert m.size == 55123456
        assert m.use_count == 10
        assert m.used_by == ["nvidia_modeset", "nvidia_drm"]
        assert m.state == "Live"
        assert m.in_use
        assert m.is_live

    def test_no_dependents(self):
        m = parse_module_line("nvidia_uvm 1523712 0 - Live 0x0")
        assert m.used_by == []
        assert not m.in_use

    @pytest.mark.parametrize("line", ["", "nvidia 123", "nvidia abc 0 - Live", "nvidia 1 x - Live"])
    def test_malformed(self, line):
        assert parse_module_line(line) is None


class TestParseContent:
    def test_skips_malformed(self):
        mods = parse_modules_content(PROC_MODULES)
        assert [m.name for m in mods] == [
            "nvidia_drm", "nvidia_modeset", "nvidia_uvm", "nvidia", "snd_hda_intel", "ext4",
        ]

    def test_bytes(self):
        assert parse_modules_content(b"nvidia 1 0 - Live 0x0\n")[0].name == "nvidia"

    def test_helpers(self):
        mods = parse_modules_content(PROC_MODULES)
        assert find_module(mods, "nvidia-drm").name == "nvidia_drm"
        assert find_module(mods, "nouveau") is None
        assert is_module_in_list(mods, "nvidia")
        assert [m.name for m in filter_by_state(mods, "Loading")] == ["ext4"]
        assert len(vendor_modules(mods)) == 4


class TestUnloadOrder:
    def test_dependents_first(self):
        mods = parse_modules_content(PROC_MODULES)
        order = unload_order(["nvidia", "nvidia_uvm", "nvidia_modeset", "nvidia_drm"], mods)
        assert order.index("nvidia_drm") < order.index("nvidia_modeset")
        assert order.index("nvidia_modeset") < order.index("nvidia")
        assert sorted(order) == sorted(["nvidia", "nvidia_uvm", "nvidia_modeset", "nvidia_drm"])

    def test_unknown_names_keep_position(self):
        assert unload_order(["a", "b"], []) == ["a", "b"]

    def test_default_order_is_stable(self):
        mods = parse_modules_content(PROC_MODULES)
        names = ["nvidia_drm", "nvidia_modeset", "nvidia_uvm", "nvidia"]
        assert unload_order(names, mods) == names


# ── Detector ─────────────────────────────────────────────────────────


class TestProcModulesDetector:
    def _detector(self, tmp_path: Path, content: str = PROC_MODULES, **kwargs) -> ProcModulesDetector:
        table = tmp_path / "modules"
        table.write_text(content)
        return ProcModulesDetector(proc_modules=table, efi_vars=tmp_path / "efi", **kwargs)

    def test_is_a_kernel_detector(self, tmp_path):
        assert isinstance(self._detector(tmp_path), KernelDetector)

    def test_loaded(self, tmp_path):
        d = self._detector(tmp_path)
        assert d.is_module_loaded("nvidia")
        assert not d.is_module_loaded("nouveau")
        assert d.get_module("nvidia_uvm").size == 1523712

    def test_missing_table(self, tmp_path):
        d = ProcModulesDetector(proc_modules=tmp_path / "nope")
        with pytest.raises(DetectionError):
            d.loaded_modules()

    def test_secure_boot_mokutil(self, tmp_path):
        ex = MockExecutor()
        ex.set_response("mokutil", ok_result("SecureBoot enabled\n"))
        assert self._detector(tmp_path, executor=ex).is_secure_boot_enabled()
        ex.set_response("mokutil", ok_result("SecureBoot disabled\n"))
        assert not self._detector(tmp_path, executor=ex).is_secure_boot_enabled()

    def test_secure_boot_efi_fallback(self, tmp_path):
        ex = MockExecutor()
        ex.set_response("mokutil", error_result("mokutil: not found"))
        efi = tmp_path / "efi"
        efi.mkdir()
        (efi / "SecureBoot-8be4df61-93ca-11d2-aa0d-00e098032b8c").write_bytes(b"\x06\x00\x00\x00\x01")
        assert self._detector(tmp_path, executor=ex).is_secure_boot_enabled()

    def test_secure_boot_unknown_is_false(self, tmp_path):
        assert not self._detector(tmp_path).is_secure_boot_enabled()

    def test_headers(self, tmp_path):
        ex = MockExecutor()
        ex.set_response("uname -r", ok_result("6.5.0-44-generic\n"))
        build = tmp_path / "lib" / "6.5.0-44-generic" / "build"
        build.mkdir(parents=True)
        d = self._detector(tmp_path, executor=ex, family=DistroFamily.DEBIAN,
                           headers_prefix=str(tmp_path / "nope-"), modules_build_dir=tmp_path / "lib")
        assert d.kernel_version() == "6.5.0-44-generic"
        assert d.headers_installed()
        assert d.headers_package() == "linux-headers-6.5.0-44-generic"

    def test_kernel_version_without_executor(self, tmp_path):
        with pytest.raises(DetectionError):
            self._detector(tmp_path).kernel_version()


class TestHeadersPackage:
    @pytest.mark.parametrize("family,version,expected", [
        (DistroFamily.DEBIAN, "6.5.0-44-generic", "linux-headers-6.5.0-44-generic"),
        (DistroFamily.RHEL, "5.14.0-362.el9.x86_64", "kernel-devel-5.14.0-362.el9.x86_64"),
        (DistroFamily.ARCH, "6.6.1-arch1-1", "linux-headers"),
        (DistroFamily.ARCH, "6.1.60-1-lts", "linux-lts-headers"),
        (DistroFamily.SUSE, "6.4.0-150600.21-default", "kernel-default-devel"),
    ])
    def test_per_family(self, family, version, expected):
        assert headers_package_for(family, version) == expected

    def test_kernel_release(self):
        assert kernel_release("6.5.0-44-generic") == "6.5.0"
        assert kernel_release("6.5") == "6.5"
        assert kernel_release("weird") == "weird"


# ── Module Manager ───────────────────────────────────────────────────

LSMOD = """\
Module                  Size  Used by
nvidia_drm             77824  4
nvidia              55123456  10 nvidia_modeset,nvidia_drm
"""


class TestModuleManagerQueries:
    def test_loaded_names_via_lsmod(self):
        ex = MockExecutor()
        ex.set_response("lsmod", ok_result(LSMOD))
        m = ModuleManager(ex)
        assert m.loaded_names() == ["nvidia_drm", "nvidia"]
        assert m.is_loaded("nvidia-drm")
        assert not m.is_loaded("nouveau")

    def test_lsmod_failure(self):
        ex = MockExecutor()
        ex.set_response("lsmod", fail_result(stderr="denied"))
        with pytest.raises(DetectionError):
            ModuleManager(ex).loaded_names()

    def test_in_use_from_refcnt(self):
        ex = MockExecutor()
        ex.set_response("cat /sys/module/nvidia/refcnt", ok_result("3\n"))
        assert ModuleManager(ex).is_in_use("nvidia")
        ex.set_response("cat /sys/module/nvidia/refcnt", ok_result("0\n"))
        assert not ModuleManager(ex).is_in_use("nvidia")

    def test_in_use_falls_back_to_lsmod(self):
        ex = MockExecutor()
        ex.set_response("cat", fail_result())
        ex.set_response("lsmod", ok_result(LSMOD))
        assert ModuleManager(ex).is_in_use("nvidia")
        assert not ModuleManager(ex).is_in_use("nouveau")


class TestUnloadWithRetry:
    def test_first_try(self):
        ex = MockExecutor()
        ModuleManager(ex, sleep=lambda s: None).unload_with_retry("nvidia")
        assert ex.was_called_with("modprobe", "-r", "nvidia")
        assert ex.calls_for("modprobe")[0].elevated

    def test_not_in_use_fails_without_retry(self):
        ex = MockExecutor()
        ex.set_response("modprobe", fail_result(stderr="FATAL"))
        ex.set_response("cat", ok_result("0"))
        with pytest.raises(ModuleError) as exc:
            ModuleManager(ex, sleep=lambda s: None).unload_with_retry("nvidia", retry_count=3)
        assert not isinstance(exc.value, ModuleInUseError)
        assert ex.call_count("modprobe") == 1

    def test_in_use_retries_then_gives_up(self):
        ex = MockExecutor()
        ex.set_response("modprobe", fail_result(stderr="in use"))
        ex.set_response("cat", ok_result("2"))
        sleeps = []
        with pytest.raises(ModuleInUseError):
            ModuleManager(ex, sleep=sleeps.append).unload_with_retry("nvidia", retry_count=2, retry_delay=0.5)
        assert ex.call_count("modprobe") == 3
        assert sleeps == [0.5, 0.5]

    def test_in_use_then_succeeds(self):
        ex = MockExecutor()
        attempts = []

        def modprobe(cmd, args, data):
            attempts.append(args)
            return fail_result(stderr="in use") if len(attempts) == 1 else ok_result()

        ex.set_handler("modprobe", modprobe)
        ex.set_response("cat", ok_result("1"))
        ModuleManager(ex, sleep=lambda s: None).unload_with_retry("nvidia", retry_count=3)
        assert len(attempts) == 2

    def test_cancelled_before_retry(self):
        ex = MockExecutor()
        ex.set_response("modprobe", fail_result(stderr="in use"))
        ex.set_response("cat", ok_result("1"))
        checks = iter([False, True])
        with pytest.raises(StepCancelledError):
            ModuleManager(ex, sleep=lambda s: None).unload_with_retry(
                "nvidia", retry_count=3, is_cancelled=lambda: next(checks),
            )
        assert ex.call_count("modprobe") == 1


class TestLoadAndReload:
    def test_force_unload(self):
        ex = MockExecutor()
        ModuleManager(ex).force_unload("nvidia")
        assert ex.was_called_with("rmmod", "-f", "nvidia")

    def test_load_failure(self):
        ex = MockExecutor()
        ex.set_response("modprobe nouveau", fail_result(stderr="not found"))
        with pytest.raises(ModuleError) as exc:
            ModuleManager(ex).load("nouveau")
        assert exc.value.module == "nouveau"

    def test_reload_reverse_order_continues(self):
        ex = MockExecutor()
        ex.set_response("modprobe nvidia_modeset", fail_result(stderr="boom"))
        err = ModuleManager(ex).reload(["nvidia_drm", "nvidia_modeset", "nvidia"])
        loaded = [c.args[0] for c in ex.calls_for("modprobe")]
        assert loaded == ["nvidia", "nvidia_modeset", "nvidia_drm"]
        assert isinstance(err, ModuleError)
        assert err.module == "nvidia_modeset"

    def test_reload_ok(self):
        assert ModuleManager(MockExecutor()).reload(["nvidia"]) is None
