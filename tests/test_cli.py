"""
Tests for the codemem CLI via subprocess.

Every test runs the real entry point (`python -m codemem.cli`) against
scope databases under a temporary directory, so nothing touches the
developer's own data directory.

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""

import json
import os
import subprocess
import sys
import pytest


PYTHON = sys.executable
CLI = [PYTHON, "-m", "codemem.cli"]


USERS_TS = """\
import { http } from './http';

export function fetchUser(id: string) {
  return http.get(id);
}
"""

APP_TS = """\
import { fetchUser } from './api/users';

const main = () => fetchUser('1');
"""


@pytest.fixture
def env(tmp_path):
    """CODEMEM_* variables pointing at a temporary workspace."""
    ws = tmp_path / "myapp"
    ws.mkdir()
    return {
        "CODEMEM_DB_ROOT": str(tmp_path / "db"),
        "CODEMEM_WORKSPACE": str(ws),
        "XDG_DATA_HOME": str(tmp_path / "xdg"),
    }


@pytest.fixture
def workspace(env):
    ws = env["CODEMEM_WORKSPACE"]
    os.makedirs(os.path.join(ws, "api"))
    os.makedirs(os.path.join(ws, "node_modules", "dep"))
    with open(os.path.join(ws, "api", "users.ts"), "w", encoding="utf-8") as f:
        f.write(USERS_TS)
    with open(os.path.join(ws, "app.ts"), "w", encoding="utf-8") as f:
        f.write(APP_TS)
    with open(os.path.join(ws, "node_modules", "dep", "index.js"), "w", encoding="utf-8") as f:
        f.write("function vendored() {}\n")
    with open(os.path.join(ws, "README.md"), "w", encoding="utf-8") as f:
        f.write("# myapp\n")
    return ws


def run(args, *, env, stdin=None):
    """Run a codemem CLI command and return CompletedProcess."""
    return subprocess.run(
        CLI + args,
        capture_output=True,
        text=True,
        env={**os.environ, **env},
        input=stdin,
        timeout=60,
    )


def run_json(args, *, env, stdin=None):
    r = run(args + ["--json", "-q"], env=env, stdin=stdin)
    assert r.returncode == 0, r.stderr
    return json.loads(r.stdout)


# ---------------------------------------------------------------------------
# General
# ---------------------------------------------------------------------------


class TestGeneral:
    def test_no_command(self, env):
        r = run([], env=env)
        assert r.returncode == 1

    def test_help(self, env):
        r = run(["--help"], env=env)
        assert r.returncode == 0
        assert "store" in r.stdout

    def test_scope_files_created_under_db_root(self, env):
        run(["store", "hello world", "--scope", "user", "-q"], env=env)
        assert os.path.exists(os.path.join(env["CODEMEM_DB_ROOT"], "user.db"))


# ---------------------------------------------------------------------------
# Knowledge
# ---------------------------------------------------------------------------


class TestStoreSearch:
    def test_store_prints_id(self, env):
        r = run(["store", "Always pin dependency versions", "--scope", "user"], env=env)
        assert r.returncode == 0, r.stderr
        assert r.stdout.strip().startswith("kn-")

    def test_store_from_stdin(self, env):
        r = run(["store", "-", "--scope", "global", "-q"], env=env,
                stdin="Logs go to stderr\n")
        assert r.returncode == 0, r.stderr
        found = run_json(["search", "stderr"], env=env)
        assert [e["content"] for e in found] == ["Logs go to stderr"]

    def test_empty_content(self, env):
        r = run(["store", "   "], env=env)
        assert r.returncode == 1

    def test_invalid_scope(self, env):
        r = run(["store", "text", "--scope", "team"], env=env)
        assert r.returncode == 1
        assert "Error" in r.stderr

    def test_search_with_tags(self, env):
        run(["store", "Token refresh every hour", "--tags", "auth", "-q"], env=env)
        run(["store", "Token bucket for rate limits", "--tags", "perf", "-q"], env=env)
        found = run_json(["search", "token", "--tags", "auth"], env=env)
        assert [e["tags"] for e in found] == [["auth"]]

    def test_search_no_results(self, env):
        r = run(["search", "nothing-here"], env=env)
        assert r.returncode == 0
        assert "No results" in r.stderr

    def test_search_by_symbol(self, env):
        run(["store", "fetchUser retries on 503", "--scope", "user", "-q"], env=env)
        run(["store", "Logs go to stderr", "--scope", "user", "-q"], env=env)
        found = run_json(["search", "--symbol", "fetchUser"], env=env)
        assert [e["content"] for e in found] == ["fetchUser retries on 503"]

    def test_search_needs_query_or_symbol(self, env):
        r = run(["search"], env=env)
        assert r.returncode == 1

    def test_list_stats(self, env):
        run(["store", "one", "--scope", "user", "-q"], env=env)
        data = run_json(["list"], env=env)
        assert data["stats"]["user"]["count"] == 1
        assert len(data["entries"]) == 1


class TestExportImport:
    def test_roundtrip(self, env, tmp_path):
        run(["store", "alpha", "-q"], env=env)
        run(["store", "beta", "-q"], env=env)
        dump = tmp_path / "dump.jsonl"
        r = run(["export", "-o", str(dump), "-q"], env=env)
        assert r.returncode == 0, r.stderr
        assert len(dump.read_text(encoding="utf-8").splitlines()) == 2

        res = run_json(["import", str(dump), "--scope", "global"], env=env)
        assert res["imported"] == 2
        again = run_json(["import", str(dump), "--scope", "global"], env=env)
        assert again["skipped_existing"] == 2

    def test_import_only_invalid(self, env, tmp_path):
        bad = tmp_path / "bad.jsonl"
        bad.write_text("not json\n", encoding="utf-8")
        r = run(["import", str(bad), "-q"], env=env)
        assert r.returncode == 1


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


class TestRules:
    def test_add_list_order(self, env):
        run(["rules", "add", "Low", "low priority rule", "--priority", "2", "-q"], env=env)
        run(["rules", "add", "High", "high priority rule", "--priority", "9", "-q"], env=env)
        rules = run_json(["rules", "list"], env=env)
        assert [r["title"] for r in rules] == ["High", "Low"]

    def test_bare_rules_lists(self, env):
        run(["rules", "add", "Only", "the one rule", "-q"], env=env)
        r = run(["rules"], env=env)
        assert r.returncode == 0
        assert "Only" in r.stdout

    def test_disable(self, env):
        r = run(["rules", "add", "T", "C", "-q"], env=env)
        rule_id = r.stdout.strip()
        assert run(["rules", "update", rule_id, "--disable", "-q"], env=env).returncode == 0
        assert run_json(["rules", "list"], env=env) == []
        assert len(run_json(["rules", "list", "--include-disabled"], env=env)) == 1

    def test_delete_unknown(self, env):
        r = run(["rules", "delete", "rule-missing"], env=env)
        assert r.returncode == 1


# ---------------------------------------------------------------------------
# Code index
# ---------------------------------------------------------------------------


class TestIndex:
    def test_index_workspace(self, env, workspace):
        res = run_json(["index"], env=env)
        # README.md has no extractor; node_modules is skipped
        assert (res["total"], res["indexed"], res["failed"]) == (2, 2, 0)

    def test_second_run_skips(self, env, workspace):
        run(["index", "-q"], env=env)
        res = run_json(["index"], env=env)
        assert (res["indexed"], res["skipped"]) == (0, 2)
        res = run_json(["index", "--full"], env=env)
        assert res["indexed"] == 2

    def test_symbols(self, env, workspace):
        run(["index", "-q"], env=env)
        data = run_json(["symbols", "fetchUser"], env=env)
        assert data["symbols"][0]["file_path"] == "api/users.ts"

    def test_symbols_of_file(self, env, workspace):
        run(["index", "-q"], env=env)
        data = run_json(["symbols", "--file", "app.ts"], env=env)
        assert [s["name"] for s in data["symbols"]] == ["main"]
        assert [i["import_path"] for i in data["imports"]] == ["./api/users"]

    def test_symbols_unknown_file(self, env, workspace):
        r = run(["symbols", "--file", "ghost.ts"], env=env)
        assert r.returncode == 1

    def test_refs_module(self, env, workspace):
        run(["index", "-q"], env=env)
        refs = run_json(["refs", "--module", "api/users"], env=env)
        assert [r["file_path"] for r in refs] == ["app.ts"]

    def test_stats(self, env, workspace):
        run(["index", "-q"], env=env)
        data = run_json(["stats"], env=env)
        assert data["index"]["files"] == 2
        assert set(data["knowledge"]) == {"project", "user", "global"}

    def test_store_links_indexed_code(self, env, workspace):
        run(["index", "-q"], env=env)
        entry = run_json(["store", "fetchUser should retry on 503"], env=env)
        assert entry["related_files"] == ["api/users.ts"]
        assert entry["related_symbols"][0]["name"] == "fetchUser"
