import io
import json
import os
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from unittest import mock

import dotstow
from dotstow import (
    BACKUP_PREFIX,
    COMPLETED,
    DECLINED,
    FAILED,
    InstallError,
    InstallWorkflow,
    NvimRemover,
    UninstallWorkflow,
    build_parser,
    get_home,
    get_managed_root,
    main,
)

from support import Answers, FakeStow, make_bundle


class WorkflowTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        base = Path(self._tmp.name)
        self.home = base / "home"
        self.home.mkdir()
        self.root = make_bundle(base / "dotfiles")
        self.outside = base / "outside"
        self.outside.mkdir()
        self.shell = mock.Mock()
        self.shell.change.return_value = True
        patcher = mock.patch.object(dotstow, "is_ubuntu", return_value=True)
        patcher.start()
        self.addCleanup(patcher.stop)
        self._stdout = redirect_stdout(io.StringIO())
        self._stdout.__enter__()
        self.addCleanup(self._stdout.__exit__, None, None, None)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def install(self, answers: Answers, runner=None, **kwargs) -> InstallWorkflow:
        return InstallWorkflow(
            managed_root=self.root,
            home=self.home,
            confirm=answers.confirm,
            runner=runner or FakeStow(),
            shell=self.shell,
            install_packages=False,
            **kwargs,
        )

    def uninstall(self, answers: Answers, runner=None) -> UninstallWorkflow:
        return UninstallWorkflow(
            managed_root=self.root,
            home=self.home,
            confirm=answers.confirm,
            ask=answers.ask,
            runner=runner or FakeStow(),
            shell=self.shell,
        )


class InstallWorkflowTests(WorkflowTestCase):
    def test_declined_up_front_changes_nothing(self) -> None:
        (self.home / ".zshrc").write_text("X")
        runner = FakeStow()
        report = self.install(Answers([False]), runner).run()
        self.assertEqual(report.status, DECLINED)
        self.assertEqual(report.exit_code, 0)
        self.assertEqual((self.home / ".zshrc").read_text(), "X")
        self.assertEqual(runner.calls, [])

    def test_declined_backup_changes_nothing(self) -> None:
        (self.home / ".zshrc").write_text("X")
        report = self.install(Answers([True, False])).run()
        self.assertEqual(report.status, DECLINED)
        self.assertEqual((self.home / ".zshrc").read_text(), "X")
        self.assertEqual(list(self.home.glob(f"{BACKUP_PREFIX}*")), [])

    def test_full_install_backs_up_links_and_switches_shell(self) -> None:
        (self.home / ".zshrc").write_text("X")
        (self.home / ".config").mkdir()
        (self.home / ".config/alacritty").symlink_to(self.outside / "gone")

        report = self.install(Answers([True, True, True])).run()

        self.assertEqual(report.status, COMPLETED)
        self.assertEqual(report.exit_code, 0)
        self.assertEqual((report.backup.path / ".zshrc").read_text(), "X")
        self.assertTrue((self.home / ".zshrc").is_symlink())
        self.assertTrue((self.home / ".config/alacritty").is_dir())
        self.assertFalse((self.home / ".config/alacritty").is_symlink())
        self.assertTrue((self.home / ".config/alacritty/alacritty.toml").is_symlink())
        self.assertTrue(all(o.ok for o in report.links))
        self.shell.change.assert_called_once_with("zsh")

    def test_no_conflicts_means_no_backup(self) -> None:
        report = self.install(Answers([True, False])).run()
        self.assertEqual(report.status, COMPLETED)
        self.assertIsNone(report.backup)
        self.assertEqual(list(self.home.glob(f"{BACKUP_PREFIX}*")), [])
        self.shell.change.assert_not_called()

    def test_rerun_is_a_no_op(self) -> None:
        self.install(Answers([True, False])).run()
        report = self.install(Answers([True, False])).run()
        self.assertEqual(report.status, COMPLETED)
        self.assertIsNone(report.backup)

    def test_mandatory_link_failure_exits_non_zero(self) -> None:
        runner = FakeStow(fail=["zsh"])
        report = self.install(Answers([True, False]), runner).run()
        self.assertEqual(report.status, FAILED)
        self.assertEqual(report.exit_code, 1)
        # Lenient mode still tried the other groups.
        self.assertEqual([c[1] for c in runner.calls], ["zsh", "starship", "alacritty"])
        self.shell.change.assert_not_called()

    def test_strict_mode_stops_early(self) -> None:
        runner = FakeStow(fail=["zsh"])
        report = self.install(Answers([True, False]), runner, strict=True).run()
        self.assertEqual(report.status, FAILED)
        self.assertEqual(runner.calls, [("stow", "zsh")])

    def test_mandatory_package_failure_exits_non_zero(self) -> None:
        workflow = self.install(Answers([True]))
        workflow.install_packages = True
        with mock.patch.object(workflow, "install_all", side_effect=InstallError("apt update failed")):
            report = workflow.run()
        self.assertEqual(report.status, FAILED)
        self.assertIn("apt update failed", report.message)

    def test_missing_dotfiles_directory_fails(self) -> None:
        workflow = self.install(Answers([True]))
        workflow.managed_root = self.root / "missing"
        self.assertEqual(workflow.run().status, FAILED)

    def test_install_all_runs_optional_steps_without_failing(self) -> None:
        installer = mock.Mock()
        installer.has_command.return_value = True
        installer.verbose = False
        fonts = mock.Mock()
        fonts.run.return_value = False
        workflow = InstallWorkflow(
            managed_root=self.root,
            home=self.home,
            confirm=Answers([False]).confirm,
            installer=installer,
            runner=FakeStow(),
            fonts=fonts,
            shell=self.shell,
        )
        with mock.patch("dotstow.version_line", return_value=None):
            workflow.install_all()
        fonts.run.assert_called_once()
        installer.install.assert_not_called()


class UninstallWorkflowTests(WorkflowTestCase):
    def installed(self) -> None:
        (self.home / ".zshrc").write_text("X")
        self.install(Answers([True, True, False])).run()

    def test_nothing_installed_and_no_interest(self) -> None:
        report = self.uninstall(Answers([False])).run()
        self.assertEqual(report.status, DECLINED)
        self.assertEqual(report.exit_code, 0)

    def test_declined_keeps_links(self) -> None:
        self.installed()
        report = self.uninstall(Answers([False])).run()
        self.assertEqual(report.status, DECLINED)
        self.assertTrue((self.home / ".zshrc").is_symlink())

    def test_uninstall_and_restore(self) -> None:
        self.installed()
        answers = Answers([True, True, False, False], ["1"])
        report = self.uninstall(answers).run()

        self.assertEqual(report.status, COMPLETED)
        self.assertFalse((self.home / ".zshrc").is_symlink())
        self.assertEqual((self.home / ".zshrc").read_text(), "X")
        self.assertFalse(os.path.lexists(self.home / ".config/starship.toml"))
        self.assertEqual(len(list(self.home.glob(f"{BACKUP_PREFIX}*"))), 1)
        self.assertEqual(report.restore.restored, [self.home / ".zshrc"])
        self.shell.change.assert_not_called()

    def test_restore_then_delete_backup_and_reset_shell(self) -> None:
        self.installed()
        answers = Answers([True, True, True, True], ["1"])
        self.uninstall(answers).run()
        self.assertEqual(list(self.home.glob(f"{BACKUP_PREFIX}*")), [])
        self.shell.change.assert_called_once_with("bash")

    def test_invalid_selection_fails_without_touching_files(self) -> None:
        self.installed()
        for raw in ("abc", "99"):
            report = self.uninstall(Answers([True, True, False], [raw])).run()
            self.assertEqual(report.status, FAILED)
            self.assertEqual(report.exit_code, 1)
            self.assertFalse(os.path.lexists(self.home / ".zshrc"))
            self.assertEqual(len(list(self.home.glob(f"{BACKUP_PREFIX}*"))), 1)

    def test_skip_selection(self) -> None:
        self.installed()
        report = self.uninstall(Answers([True, True, False], ["0"])).run()
        self.assertEqual(report.status, COMPLETED)
        self.assertIsNone(report.restore)
        self.assertFalse(os.path.lexists(self.home / ".zshrc"))

    def test_manual_removal_without_stow(self) -> None:
        self.installed()
        runner = FakeStow(available=False)
        report = self.uninstall(Answers([True, False, False]), runner).run()
        self.assertEqual(report.status, COMPLETED)
        self.assertEqual(runner.calls, [])
        self.assertFalse(os.path.lexists(self.home / ".zshrc"))
        self.assertFalse(os.path.lexists(self.home / ".config/alacritty/alacritty.toml"))

    def test_failed_unstow_skips_restore(self) -> None:
        self.installed()
        answers = Answers([True, True], ["1"])
        report = self.uninstall(answers, FakeStow(fail_unstow=["alacritty"])).run()

        self.assertEqual(report.status, FAILED)
        self.assertEqual(report.exit_code, 1)
        self.assertIsNone(report.restore)
        self.assertNotIn("Do you want to restore a previous configuration?", answers.asked)
        self.assertTrue((self.home / ".config/alacritty/alacritty.toml").is_symlink())
        self.assertFalse(os.path.lexists(self.home / ".zshrc"))
        self.assertEqual(len(list(self.home.glob(f"{BACKUP_PREFIX}*"))), 1)

    def test_backups_offered_when_nothing_installed(self) -> None:
        (self.home / ".zshrc").write_text("X")
        self.install(Answers([True, True, False])).run()
        for package in ("zsh", "starship", "alacritty"):
            FakeStow().unstow(self.root, package, self.home)
        report = self.uninstall(Answers([True, False], ["1"])).run()
        self.assertEqual(report.status, COMPLETED)
        self.assertEqual((self.home / ".zshrc").read_text(), "X")


class NvimRemoverTests(WorkflowTestCase):
    def setUp(self) -> None:
        super().setUp()
        (self.home / ".config/nvim/lua").mkdir(parents=True)
        (self.home / ".config/nvim/init.lua").write_text("require('config.lazy')")
        (self.home / ".local/share/nvim/lazy").mkdir(parents=True)
        self.installer = mock.Mock()
        self.installer.has_command.return_value = False

    def remover(self, answers: Answers) -> NvimRemover:
        return NvimRemover(self.home, confirm=answers.confirm, ask=answers.ask, installer=self.installer)

    def test_nothing_to_remove(self) -> None:
        with tempfile.TemporaryDirectory() as empty:
            report = NvimRemover(Path(empty), installer=self.installer).run()
        self.assertEqual(report.status, COMPLETED)

    def test_backup_and_remove(self) -> None:
        report = self.remover(Answers([True, True], ["yes"])).run()
        self.assertEqual(report.status, COMPLETED)
        self.assertEqual(self.remover(Answers()).existing(), [])
        backups = list(self.home.glob(".nvim_backup_*"))
        self.assertEqual(len(backups), 1)
        self.assertEqual((backups[0] / "nvim_config/init.lua").read_text(), "require('config.lazy')")
        self.assertTrue((backups[0] / "nvim_data/lazy").is_dir())

    def test_anything_but_yes_cancels(self) -> None:
        report = self.remover(Answers([True, False], ["y"])).run()
        self.assertEqual(report.status, DECLINED)
        self.assertTrue((self.home / ".config/nvim/init.lua").exists())

    def test_declined_at_start(self) -> None:
        report = self.remover(Answers([False])).run()
        self.assertEqual(report.status, DECLINED)
        self.assertEqual(list(self.home.glob(".nvim_backup_*")), [])


class CliTests(WorkflowTestCase):
    def test_get_home_override(self) -> None:
        with mock.patch.dict(os.environ, {"DOTSTOW_HOME": str(self.home)}):
            self.assertEqual(get_home(), self.home)

    def test_managed_root_resolution(self) -> None:
        with mock.patch.dict(os.environ, {"DOTSTOW_DIR": str(self.root)}):
            self.assertEqual(get_managed_root(), self.root)
            self.assertEqual(get_managed_root(str(self.outside)), self.outside)
        with mock.patch.dict(os.environ, {}, clear=True):
            self.assertEqual(get_managed_root(), dotstow.DEFAULT_DOTFILES_DIR)

    def test_every_command_runs_without_arguments(self) -> None:
        parser = build_parser()
        for command in ("install", "uninstall", "backups", "remove-nvim"):
            args = parser.parse_args([command])
            self.assertEqual(args.command, command)
            self.assertFalse(args.verbose)

    def test_yes_is_install_only(self) -> None:
        parser = build_parser()
        self.assertTrue(parser.parse_args(["install", "--yes"]).yes)
        with mock.patch("sys.stderr", io.StringIO()):
            for command in ("uninstall", "remove-nvim"):
                with self.assertRaises(SystemExit):
                    parser.parse_args([command, "--yes"])

    def test_backups_json(self) -> None:
        backup = self.home / f"{BACKUP_PREFIX}20240101_120000"
        backup.mkdir()
        (backup / ".zshrc").write_text("X")
        buffer = io.StringIO()
        with mock.patch.dict(os.environ, {"DOTSTOW_HOME": str(self.home)}), redirect_stdout(buffer):
            code = main(["backups", "--json"])
        self.assertEqual(code, 0)
        data = json.loads(buffer.getvalue())
        self.assertEqual(data[0]["files"], [".zshrc"])
        self.assertEqual(data[0]["created"], "2024-01-01T12:00:00")

    def test_install_command_with_yes(self) -> None:
        with mock.patch.dict(os.environ, {"DOTSTOW_HOME": str(self.home)}), mock.patch.object(
            dotstow.InstallWorkflow, "run", return_value=dotstow.RunReport(FAILED)
        ) as run:
            code = main(["install", "--yes", "--skip-packages", "--dotfiles-dir", str(self.root)])
        self.assertEqual(code, 1)
        run.assert_called_once()


if __name__ == "__main__":
    unittest.main()
