"""
Tests for the fallback driver restore step.
"""

import pytest

from igor.adapters.mock import MockExecutor, fail_result, ok_result
from igor.core import state_keys as keys
from igor.core.context import UninstallContext
from igor.core.errors import StepCancelledError, ValidationError
from igor.core.models.distro import Distribution, DistroFamily
from igor.core.models.step import StepStatus
from igor.core.steps import DriverRestoreStep
from igor.core.steps.driver_restore import BLACKLIST_PATHS, DEFAULT_BLACKLIST_TEXT, boot_image_command

BLACKLIST = "/etc/modprobe.d/blacklist-nouveau.conf"
CONTENT = "blacklist nouveau\noptions nouveau modeset=0\n"


def _executor(present=(BLACKLIST,), loaded=()):
    """Mock host: ``present`` blacklist files exist, ``loaded`` modules are in lsmod."""
    ex = MockExecutor()
    files = {p: CONTENT for p in present}
    ex.set_handler("test", lambda c, a, d: ok_result() if a[-1] in files else fail_result())
    ex.set_handler("cat", lambda c, a, d: ok_result(files.get(a[0], "")))
    lsmod = "Module Size Used by\n" + "".join(f"{m} 1000 0\n" for m in loaded)
    ex.set_response("lsmod", ok_result(lsmod))
    return ex


def _ctx(ex, family=DistroFamily.DEBIAN, **kwargs):
    return UninstallContext(executor=ex, distro=Distribution(id="x", family=family), **kwargs)


class TestBootImageCommand:
    @pytest.mark.parametrize("family,expected", [
        (DistroFamily.DEBIAN, ("update-initramfs", ["-u"])),
        (DistroFamily.UNKNOWN, ("update-initramfs", ["-u"])),
        (DistroFamily.RHEL, ("dracut", ["--force"])),
        (DistroFamily.SUSE, ("dracut", ["--force"])),
        (DistroFamily.ARCH, ("mkinitcpio", ["-P"])),
    ])
    def test_per_family(self, family, expected):
        assert boot_image_command(family) == expected


class TestValidate:
    def test_defaults(self):
        step = DriverRestoreStep()
        assert step.name == "driver_restore"
        assert step.fallback_module == "nouveau"
        assert step.blacklist_paths == BLACKLIST_PATHS
        step.validate(_ctx(MockExecutor()))

    def test_bad_module(self):
        with pytest.raises(ValidationError):
            DriverRestoreStep(fallback_module="nouveau;reboot").validate(_ctx(MockExecutor()))

    def test_bad_path(self):
        with pytest.raises(ValidationError):
            DriverRestoreStep(blacklist_paths=["/etc/../x"]).validate(_ctx(MockExecutor()))

    def test_requires_executor(self):
        with pytest.raises(ValidationError):
            DriverRestoreStep().validate(UninstallContext())


class TestExecute:
    def test_full_restore(self):
        ex = _executor()
        ctx = _ctx(ex)
        result = DriverRestoreStep().execute(ctx)
        assert result.status == StepStatus.COMPLETED
        assert result.can_rollback
        assert ex.was_called_with("rm", "-f", BLACKLIST)
        assert ex.was_called_with("update-initramfs", "-u")
        assert ex.was_called_with("modprobe", "nouveau")
        assert ctx.get_dict(keys.REMOVED_BLACKLISTS) == {BLACKLIST: CONTENT}
        assert ctx.get_bool(keys.DRIVER_RESTORED)
        assert ctx.get_bool(keys.FALLBACK_MODULE_LOADED)
        assert ctx.get_bool(keys.NEEDS_REBOOT)

    def test_already_loaded_skips(self):
        ex = _executor(loaded=("nouveau",))
        ctx = _ctx(ex)
        result = DriverRestoreStep().execute(ctx)
        assert result.status == StepStatus.SKIPPED
        assert ctx.get_bool(keys.DRIVER_RESTORED)
        assert ex.call_count("rm") == 0

    def test_arch_uses_mkinitcpio(self):
        ex = _executor()
        DriverRestoreStep().execute(_ctx(ex, family=DistroFamily.ARCH))
        assert ex.was_called_with("mkinitcpio", "-P")

    def test_initramfs_failure_restores_blacklist(self):
        ex = _executor()
        ex.set_response("update-initramfs", fail_result(stderr="no space"))
        ctx = _ctx(ex)
        result = DriverRestoreStep().execute(ctx)
        assert result.failed
        assert result.message == "failed to regenerate initramfs"
        tee = ex.calls_for("tee")
        assert [c.args for c in tee] == [[BLACKLIST]]
        assert tee[0].input == CONTENT.encode()
        assert tee[0].elevated
        assert ex.call_count("modprobe") == 0

    def test_load_failure_is_warning(self):
        ex = _executor()
        ex.set_response("modprobe nouveau", fail_result(stderr="Key was rejected by service"))
        ctx = _ctx(ex)
        result = DriverRestoreStep().execute(ctx)
        assert result.status == StepStatus.COMPLETED
        assert not ctx.get_bool(keys.FALLBACK_MODULE_LOADED)
        assert ctx.get_bool(keys.NEEDS_REBOOT)

    def test_no_reboot_when_loaded_live_without_regeneration(self):
        ex = _executor(present=())
        ctx = _ctx(ex)
        result = DriverRestoreStep(regenerate_initramfs=False).execute(ctx)
        assert result.status == StepStatus.COMPLETED
        assert not ctx.get_bool(keys.NEEDS_REBOOT)

    def test_toggles_off(self):
        ex = _executor()
        result = DriverRestoreStep(remove_blacklist=False, regenerate_initramfs=False,
                                   load_module=False).execute(_ctx(ex))
        assert result.status == StepStatus.COMPLETED
        assert ex.call_count("rm") == 0
        assert ex.call_count("update-initramfs") == 0
        assert ex.call_count("modprobe") == 0

    def test_dry_run(self):
        ex = _executor()
        ctx = _ctx(ex, dry_run=True)
        result = DriverRestoreStep().execute(ctx)
        assert result.status == StepStatus.COMPLETED
        assert ex.call_count("rm") == 0
        assert ex.call_count("update-initramfs") == 0
        assert not ctx.has_state(keys.DRIVER_RESTORED)

    def test_cancel_after_blacklist_removal_writes_it_back(self):
        ex = _executor()
        ctx = _ctx(ex)

        def rm_then_cancel(cmd, args, data):
            ctx.cancel()
            return ok_result()

        ex.set_handler("rm", rm_then_cancel)
        result = DriverRestoreStep().execute(ctx)
        assert isinstance(result.error, StepCancelledError)
        tee = ex.calls_for("tee")
        assert [c.args for c in tee] == [[BLACKLIST]]
        assert tee[0].input == CONTENT.encode()
        assert ex.call_count("update-initramfs") == 0
        assert ex.call_count("modprobe") == 0
        assert not ctx.has_state(keys.DRIVER_RESTORED)

    def test_cancel_after_rebuild_records_state_for_rollback(self):
        ex = _executor()
        ctx = _ctx(ex)

        def rebuild_then_cancel(cmd, args, data):
            ctx.cancel()
            return ok_result()

        ex.set_handler("update-initramfs", rebuild_then_cancel)
        step = DriverRestoreStep()
        result = step.execute(ctx)
        assert isinstance(result.error, StepCancelledError)
        assert ex.call_count("modprobe") == 0
        assert ctx.get_dict(keys.REMOVED_BLACKLISTS) == {BLACKLIST: CONTENT}
        assert ctx.get_bool(keys.INITRAMFS_REGENERATED)

        ex.reset()
        assert step.rollback(ctx) is None
        tee = ex.calls_for("tee")
        assert [c.args for c in tee] == [[BLACKLIST]]
        assert tee[0].input == CONTENT.encode()
        assert ex.was_called_with("update-initramfs", "-u")
        assert ex.call_count("modprobe") == 0


class TestRollback:
    def test_reverses_everything(self):
        ex = _executor()
        ctx = _ctx(ex)
        step = DriverRestoreStep()
        step.execute(ctx)
        ex.reset()
        assert step.rollback(ctx) is None
        assert ex.was_called_with("modprobe", "-r", "nouveau")
        tee = ex.calls_for("tee")
        assert [c.args for c in tee] == [[BLACKLIST]]
        assert tee[0].input == CONTENT.encode()
        assert ex.was_called_with("update-initramfs", "-u")
        assert not ctx.has_state(keys.DRIVER_RESTORED)

    def test_unreadable_content_uses_default_text(self):
        ex = MockExecutor()
        ctx = _ctx(ex)
        ctx.set_state(keys.DRIVER_RESTORED, True)
        ctx.set_state(keys.BLACKLIST_REMOVED, True)
        ctx.set_state(keys.REMOVED_BLACKLISTS, {BLACKLIST: ""})
        DriverRestoreStep().rollback(ctx)
        assert ex.calls_for("tee")[0].input == DEFAULT_BLACKLIST_TEXT.encode()

    def test_continues_and_surfaces_first_error(self):
        ex = MockExecutor()
        ex.set_response("modprobe", fail_result(stderr="in use"))
        ctx = _ctx(ex)
        ctx.set_state(keys.DRIVER_RESTORED, True)
        ctx.set_state(keys.FALLBACK_MODULE_LOADED, True)
        ctx.set_state(keys.BLACKLIST_REMOVED, True)
        ctx.set_state(keys.REMOVED_BLACKLISTS, {BLACKLIST: CONTENT})
        ctx.set_state(keys.INITRAMFS_REGENERATED, True)
        err = DriverRestoreStep().rollback(ctx)
        assert err is not None
        assert "in use" in str(err)
        assert ex.call_count("tee") == 1
        assert ex.call_count("update-initramfs") == 1

    def test_noop_when_not_restored(self):
        ex = MockExecutor()
        assert DriverRestoreStep().rollback(_ctx(ex)) is None
        assert ex.call_count() == 0
