import unittest
from pathlib import Path
from unittest.mock import MagicMock
import sys
import os
import json
import stat
import tempfile

# Add scripts/ to path to import modules
sys.path.append(os.path.join(os.path.dirname(__file__), "../scripts"))

from appendix import RunCache, SecurityDetail, UpdateOptions, run_update
from manifest import DependencyTree, ManifestStore


def write_manifest(path: Path, payload) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
    return path


def read_manifest(path: Path):
    return json.loads(path.read_text(encoding="utf-8"))


class TestRunUpdate(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def options(self, **kwargs) -> UpdateOptions:
        kwargs.setdefault("use_tree", False)
        return UpdateOptions(root=self.root, **kwargs)

    def test_lodash_and_pg_written_once(self):
        path = write_manifest(
            self.root / "package.json",
            {
                "name": "app",
                "dependencies": {"lodash": "^4.17.0", "pg": "^8.13.1"},
                "overrides": {"lodash": "4.17.21", "pg": {"pg-types": "^4.0.1"}},
            },
        )
        result = run_update(self.options(reason="security pin"))
        written = read_manifest(path)

        appendix = written["pastoralist"]["appendix"]
        self.assertEqual(list(appendix), ["lodash@4.17.21", "pg-types@^4.0.1"])
        self.assertEqual(appendix["lodash@4.17.21"]["dependents"], {"app": "lodash@^4.17.0"})
        self.assertEqual(appendix["pg-types@^4.0.1"]["dependents"], {"app": "pg@^8.13.1 (nested override)"})
        self.assertEqual(appendix["lodash@4.17.21"]["ledger"]["reason"], "security pin")
        self.assertEqual(written["overrides"], {"lodash": "4.17.21", "pg": {"pg-types": "^4.0.1"}})
        self.assertEqual(result.metrics.write, "written")
        self.assertEqual(result.metrics.appendix_added, 2)
        self.assertEqual(result.appendix, appendix)

    def test_second_run_is_byte_identical(self):
        path = write_manifest(
            self.root / "package.json",
            {
                "dependencies": {"lodash": "^4.17.0", "pg": "^8.13.1"},
                "devDependencies": {"typescript": "^5.0.0"},
                "resolutions": {"lodash": "4.17.21", "pg": {"pg-types": "^4.0.1"}},
            },
        )
        details = [SecurityDetail(package_name="lodash", reason="Prototype pollution", severity="high")]
        run_update(self.options(security_details=details, security_provider="osv"))
        first = path.read_bytes()
        second_result = run_update(self.options(security_details=details, security_provider="osv", reason="other"))
        self.assertEqual(path.read_bytes(), first)
        self.assertEqual(second_result.metrics.appendix_added, 0)
        ledger = read_manifest(path)["pastoralist"]["appendix"]["lodash@4.17.21"]["ledger"]
        self.assertEqual(ledger["reason"], "Prototype pollution")
        self.assertEqual(ledger["securityProvider"], "osv")

    def test_unused_override_is_swept(self):
        path = write_manifest(
            self.root / "package.json",
            {
                "dependencies": {"lodash": "^4.17.0"},
                "overrides": {"lodash": "4.17.21", "left-pad": "1.3.0"},
                "pastoralist": {
                    "appendix": {
                        "left-pad@1.3.0": {
                            "dependents": {"root": "left-pad@^1.0.0"},
                            "ledger": {"addedDate": "2023-05-01T00:00:00Z"},
                        }
                    }
                },
            },
        )
        result = run_update(self.options())
        written = read_manifest(path)
        self.assertEqual(written["overrides"], {"lodash": "4.17.21"})
        self.assertEqual(list(written["pastoralist"]["appendix"]), ["lodash@4.17.21"])
        self.assertEqual(result.removed, {"left-pad": "1.3.0"})
        self.assertEqual(result.metrics.overrides_removed, {"left-pad": "1.3.0"})
        self.assertEqual(result.missing_in_root, ["left-pad"])
        self.assertTrue(any("left-pad" in warning for warning in result.warnings))

    def test_installed_tree_keeps_transitive_override(self):
        path = write_manifest(
            self.root / "package.json",
            {"dependencies": {"mkdirp": "^0.5.0"}, "overrides": {"minimist": "1.2.8"}},
        )
        loader = MagicMock(return_value={"mkdirp": True, "minimist": True})
        cache = RunCache(store=ManifestStore(), tree=DependencyTree(loader))
        run_update(self.options(), cache=cache)
        written = read_manifest(path)
        self.assertEqual(written["overrides"], {"minimist": "1.2.8"})
        self.assertEqual(
            written["pastoralist"]["appendix"]["minimist@1.2.8"]["dependents"],
            {"root": "minimist (transitive dependency)"},
        )
        self.assertEqual(loader.call_count, 1)

    def test_oracle_failure_is_not_fatal(self):
        path = write_manifest(
            self.root / "package.json",
            {"dependencies": {"lodash": "^4.17.0"}, "overrides": {"lodash": "4.17.21", "minimist": "1.2.8"}},
        )
        cache = RunCache(store=ManifestStore(), tree=DependencyTree(MagicMock(side_effect=RuntimeError("no npm"))))
        result = run_update(self.options(), cache=cache)
        self.assertEqual(read_manifest(path)["overrides"], {"lodash": "4.17.21"})
        self.assertEqual(result.metrics.write, "written")

    def test_dry_run_does_not_write(self):
        payload = {"dependencies": {"lodash": "^4.17.0"}, "overrides": {"lodash": "4.17.21"}}
        path = write_manifest(self.root / "package.json", payload)
        before = path.read_bytes()
        result = run_update(self.options(dry_run=True))
        self.assertEqual(path.read_bytes(), before)
        self.assertEqual(result.metrics.write, "dry-run")
        self.assertIn("lodash@4.17.21", result.manifest["pastoralist"]["appendix"])

    def test_unreadable_manifest_skips_write(self):
        path = self.root / "package.json"
        path.write_text("{ broken", encoding="utf-8")
        with self.assertLogs("manifest.store", level="ERROR"):
            result = run_update(self.options())
        self.assertEqual(path.read_text(encoding="utf-8"), "{ broken")
        self.assertEqual(result.appendix, {})
        self.assertEqual(result.overrides, {})
        self.assertEqual(result.metrics.write, "skipped")
        self.assertTrue(result.warnings)

    def test_no_overrides_clears_tracking(self):
        path = write_manifest(
            self.root / "package.json",
            {
                "name": "app",
                "dependencies": {"lodash": "^4.17.0"},
                "pastoralist": {"appendix": {"lodash@4.17.21": {"dependents": {"app": "lodash@^4.17.0"}}}},
            },
        )
        run_update(self.options())
        self.assertEqual(read_manifest(path), {"name": "app", "dependencies": {"lodash": "^4.17.0"}})

    def test_unexpressible_entries_survive(self):
        path = write_manifest(
            self.root / "package.json",
            {
                "dependencies": {"lodash": "^4.17.0"},
                "overrides": {"lodash": "4.17.21", "deep": {"a": {"b": "1.0.0"}}},
            },
        )
        run_update(self.options())
        self.assertEqual(read_manifest(path)["overrides"]["deep"], {"a": {"b": "1.0.0"}})

    def test_security_overrides_are_added(self):
        path = write_manifest(self.root / "package.json", {"dependencies": {"minimist": "^1.2.0"}})
        details = [SecurityDetail(package_name="minimist", reason="CVE-2021-44906", severity="critical")]
        result = run_update(self.options(security_details=details, security_overrides={"minimist": "1.2.6"}))
        written = read_manifest(path)
        self.assertEqual(written["overrides"], {"minimist": "1.2.6"})
        self.assertEqual(written["pastoralist"]["appendix"]["minimist@1.2.6"]["ledger"]["reason"], "CVE-2021-44906")
        self.assertEqual(result.metrics.severities, {"critical": 1})

    def test_patches_attached_and_unused_reported(self):
        write_manifest(
            self.root / "package.json",
            {"dependencies": {"lodash": "^4.17.0"}, "overrides": {"lodash": "4.17.21"}},
        )
        (self.root / "patches").mkdir()
        (self.root / "patches" / "lodash+4.17.21.patch").write_text("", encoding="utf-8")
        (self.root / "patches" / "left-pad+1.3.0.patch").write_text("", encoding="utf-8")
        result = run_update(self.options())
        self.assertEqual(result.appendix["lodash@4.17.21"]["patches"], ["patches/lodash+4.17.21.patch"])
        self.assertEqual(result.unused_patches, ["patches/left-pad+1.3.0.patch"])
        self.assertTrue((self.root / "patches" / "left-pad+1.3.0.patch").exists())

    def test_compact_appendix_round_trips(self):
        path = write_manifest(
            self.root / "package.json",
            {
                "dependencies": {"lodash": "^4.17.0"},
                "overrides": {"lodash": "4.17.21"},
                "pastoralist": {"compactAppendix": True},
            },
        )
        run_update(self.options())
        first = path.read_bytes()
        written = read_manifest(path)["pastoralist"]
        self.assertEqual(list(written["appendix"]["lodash@4.17.21"]), ["addedDate"])
        self.assertTrue(written["compactAppendix"])
        run_update(self.options())
        self.assertEqual(path.read_bytes(), first)

    def test_root_manifest_with_invalid_utf8_skips_write(self):
        path = self.root / "package.json"
        path.write_bytes(b'{"name": "r\xff"}')
        with self.assertLogs("manifest.store", level="ERROR"):
            result = run_update(self.options())
        self.assertEqual(path.read_bytes(), b'{"name": "r\xff"}')
        self.assertEqual(result.appendix, {})
        self.assertEqual(result.metrics.write, "skipped")

    @unittest.skipIf(os.name == "nt", "POSIX file modes")
    def test_write_keeps_manifest_mode(self):
        path = write_manifest(
            self.root / "package.json",
            {"dependencies": {"lodash": "^4.17.0"}, "overrides": {"lodash": "4.17.21"}},
        )
        os.chmod(path, 0o644)
        cache = RunCache(store=ManifestStore(), tree=DependencyTree.disabled())
        run_update(self.options(), cache=cache)
        self.assertEqual(oct(stat.S_IMODE(path.stat().st_mode)), oct(0o644))


class TestRunUpdateWorkspaces(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.path = write_manifest(
            self.root / "package.json",
            {"name": "mono", "private": True, "workspaces": ["packages/*"], "overrides": {"react": "18.2.0"}},
        )
        write_manifest(self.root / "packages" / "web" / "package.json", {"name": "web", "dependencies": {"react": "^18.0.0"}})
        write_manifest(self.root / "packages" / "docs" / "package.json", {"name": "docs", "dependencies": {"react": "^17.0.2"}})

    def tearDown(self):
        self._tmp.cleanup()

    def test_members_recorded_and_idempotent(self):
        result = run_update(UpdateOptions(root=self.root, use_tree=False, workers=2))
        written = read_manifest(self.path)
        section = written["pastoralist"]
        self.assertEqual(
            section["appendix"]["react@18.2.0"]["dependents"],
            {"docs": "react@^17.0.2", "web": "react@^18.0.0"},
        )
        self.assertIn("addedDate", section["appendix"]["react@18.2.0"]["ledger"])
        self.assertEqual(sorted(section["overridePaths"]), ["packages/docs/package.json", "packages/web/package.json"])
        self.assertEqual(written["overrides"], {"react": "18.2.0"})
        self.assertEqual(result.metrics.workspace_scanned, 2)
        self.assertFalse(any("dep-paths" in warning for warning in result.warnings))

        first = self.path.read_bytes()
        run_update(UpdateOptions(root=self.root, use_tree=False, workers=1))
        self.assertEqual(self.path.read_bytes(), first)

    def test_override_paths_protect_removed_member(self):
        run_update(UpdateOptions(root=self.root, use_tree=False))
        # Members vanish from the glob; their recorded paths still count as usage.
        result = run_update(UpdateOptions(root=self.root, use_tree=False, dep_paths=["apps/*/package.json"]))
        self.assertEqual(result.removed, {})
        self.assertEqual(read_manifest(self.path)["overrides"], {"react": "18.2.0"})

    def test_cli_dep_paths_win_over_config(self):
        write_manifest(self.root / "apps" / "site" / "package.json", {"name": "site", "dependencies": {"react": "^16.0.0"}})
        result = run_update(UpdateOptions(root=self.root, use_tree=False, dep_paths=["apps/*/package.json"]))
        self.assertEqual(result.appendix["react@18.2.0"]["dependents"], {"site": "react@^16.0.0"})


if __name__ == "__main__":
    unittest.main()
