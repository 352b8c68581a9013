"""
Tests for codemem.code_index — incremental indexing, batches, symbol search,
references, soft delete and statistics.

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""

import pytest

from codemem.code_index import CodeIndex, file_digest
from codemem.config import IndexConfig, StoreConfig
from codemem.errors import InvalidInputError, NotFoundError
from codemem.extractors import ExtractorRegistry, default_registry
from codemem.extractors.python import PythonExtractor
from codemem.extractors.javascript import TypeScriptExtractor
from codemem.scopes import ScopeDatabaseManager


@pytest.fixture
def manager(tmp_path):
    m = ScopeDatabaseManager(
        StoreConfig(db_root=str(tmp_path), workspace=str(tmp_path / "myapp")),
        in_memory=True,
    )
    yield m
    m.close()


@pytest.fixture
def index(manager):
    return CodeIndex(manager)


USERS_TS = """\
import { http } from './http';

export function fetchUser(id: string) {
  return http.get(`/users/${id}`);
}

export class UserCache {
  lookup(id: string) {
    return null;
  }
}
"""

APP_TS = """\
import { fetchUser } from './api/users';

const main = () => fetchUser('1');
"""


def spec(rel, content, root="/ws"):
    return {"file_path": f"{root}/{rel}", "relative_path": rel, "content": content}


class ExplodingExtractor(PythonExtractor):
    """Fails on any file containing the marker."""

    def extract(self, content):
        if "EXPLODE" in content:
            raise RuntimeError("syntax error near EXPLODE")
        return super().extract(content)


# ---------------------------------------------------------------------------
# index_file
# ---------------------------------------------------------------------------


class TestIndexFile:
    def test_indexed(self, index):
        res = index.index_file("/ws/api/users.ts", "api/users.ts", USERS_TS)
        assert res.status == "indexed"
        assert res.language == "typescript"
        assert res.symbols == 3
        assert res.imports == 1

    def test_same_content_skipped(self, index):
        index.index_file("/ws/a.ts", "a.ts", USERS_TS)
        res = index.index_file("/ws/a.ts", "a.ts", USERS_TS)
        assert res.status == "skipped"

    def test_force_reindexes(self, index):
        index.index_file("/ws/a.ts", "a.ts", USERS_TS)
        assert index.index_file("/ws/a.ts", "a.ts", USERS_TS, force=True).status == "indexed"

    def test_symbols_match_extractor(self, index):
        index.index_file("/ws/api/users.ts", "api/users.ts", USERS_TS)
        data = index.get_file_symbols("api/users.ts")
        expected_syms, expected_imps = TypeScriptExtractor().extract(USERS_TS)
        got = [(s.name, s.kind, s.start_line, s.end_line, s.container_name, s.is_exported)
               for s in data["symbols"]]
        want = [(s.name, s.kind, s.start_line, s.end_line, s.container_name, s.is_exported)
                for s in expected_syms]
        assert got == want
        assert [i.import_path for i in data["imports"]] == [i.import_path for i in expected_imps]
        assert data["file"].content_hash == file_digest(USERS_TS)
        assert data["file"].line_count == len(USERS_TS.splitlines())

    def test_reindex_replaces_symbols(self, index):
        index.index_file("/ws/m.py", "m.py", "def old_one():\n    pass\n")
        index.index_file("/ws/m.py", "m.py", "def new_one():\n    pass\n\nclass Extra:\n    pass\n")
        names = [s.name for s in index.get_file_symbols("m.py")["symbols"]]
        assert names == ["new_one", "Extra"]
        assert index.search_symbols("old_one") == []

    def test_reads_from_disk(self, index, tmp_path):
        src = tmp_path / "tool.py"
        src.write_text("def run():\n    return 1\n", encoding="utf-8")
        res = index.index_file(str(src), "tool.py")
        assert res.status == "indexed"
        data = index.get_file_symbols("tool.py")
        assert data["file"].absolute_path == str(src)
        assert data["file"].mtime > 0

    def test_unreadable_file_unparsable(self, index, tmp_path):
        res = index.index_file(str(tmp_path / "missing.py"), "missing.py")
        assert res.status == "unparsable"
        with pytest.raises(NotFoundError):
            index.get_file_symbols("missing.py")

    def test_unknown_language_cataloged(self, index):
        res = index.index_file("/ws/README.md", "README.md", "# Title\n")
        assert res.status == "indexed"
        assert res.language is None
        assert index.get_file_symbols("README.md")["symbols"] == []

    def test_missing_paths_rejected(self, index):
        with pytest.raises(InvalidInputError):
            index.index_file("", "", "x")

    def test_extractor_failure(self, manager):
        reg = ExtractorRegistry([ExplodingExtractor()])
        idx = CodeIndex(manager, registry=reg)
        res = idx.index_file("/ws/b.py", "b.py", "EXPLODE = 1\n")
        assert res.status == "unparsable"
        assert "EXPLODE" in res.message


# ---------------------------------------------------------------------------
# index_workspace
# ---------------------------------------------------------------------------


class TestIndexWorkspace:
    def test_one_failing_file(self, manager):
        idx = CodeIndex(manager, registry=ExtractorRegistry([ExplodingExtractor()]))
        files = [
            spec("a.py", "def alpha():\n    pass\n"),
            spec("b.py", "EXPLODE\n"),
            spec("c.py", "class Gamma:\n    pass\n"),
        ]
        res = idx.index_workspace(files)
        assert (res.total, res.indexed, res.failed, res.skipped) == (3, 2, 1, 0)
        assert len(res.errors) == 1 and res.errors[0].startswith("b.py")
        assert [s.name for s in idx.get_file_symbols("a.py")["symbols"]] == ["alpha"]
        assert [s.name for s in idx.get_file_symbols("c.py")["symbols"]] == ["Gamma"]
        with pytest.raises(NotFoundError):
            idx.get_file_symbols("b.py")

    def test_incremental_second_run(self, index):
        files = [spec("a.py", "def a():\n    pass\n"), spec("b.py", "def b():\n    pass\n")]
        index.index_workspace(files)
        files[1]["content"] = "def b2():\n    pass\n"
        res = index.index_workspace(files)
        assert (res.indexed, res.skipped) == (1, 1)

    def test_full_run(self, index):
        files = [spec("a.py", "def a():\n    pass\n")]
        index.index_workspace(files)
        assert index.index_workspace(files, incremental=False).indexed == 1

    def test_batches_and_progress(self, manager):
        idx = CodeIndex(manager, config=IndexConfig(batch_size=2))
        files = [spec(f"m{i}.py", f"def f{i}():\n    pass\n") for i in range(5)]
        seen = []
        res = idx.index_workspace(files, progress=lambda done, total: seen.append((done, total)))
        assert res.indexed == 5
        assert seen == [(2, 5), (4, 5), (5, 5)]

    def test_errors_bounded(self, manager):
        idx = CodeIndex(manager, registry=ExtractorRegistry([ExplodingExtractor()]),
                        config=IndexConfig(max_errors=2))
        files = [spec(f"bad{i}.py", "EXPLODE") for i in range(4)]
        res = idx.index_workspace(files)
        assert res.failed == 4
        assert len(res.errors) == 2

    def test_camel_case_specs(self, index):
        res = index.index_workspace([
            {"filePath": "/ws/x.py", "relativePath": "x.py", "content": "X = 1\n"},
        ])
        assert res.indexed == 1

    def test_removes_soft_deleted(self, index):
        index.index_file("/ws/gone.py", "gone.py", "def gone():\n    pass\n")
        index.mark_deleted("gone.py")
        res = index.index_workspace([spec("a.py", "A = 1\n")])
        assert res.removed == 1
        assert index.search_symbols("gone") == []

    def test_malformed_entry_counted_as_failed(self, index):
        res = index.index_workspace([
            spec("a.py", "def alpha():\n    pass\n"),
            {"file_path": "/ws/b.py", "content": "def beta():\n    pass\n"},
            "c.py",
        ])
        assert (res.total, res.indexed, res.failed) == (3, 1, 2)
        assert res.errors[0].startswith("entry 1:")
        assert "relative_path" in res.errors[0]
        assert res.errors[1].startswith("entry 2:")
        assert index.get_index_stats()["files"] == 1
        assert [s.name for s in index.get_file_symbols("a.py")["symbols"]] == ["alpha"]

    def test_files_must_be_a_list(self, index):
        with pytest.raises(InvalidInputError):
            index.index_workspace({"file_path": "/ws/x.py", "relative_path": "x.py"})
        with pytest.raises(InvalidInputError):
            index.index_workspace(None)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


@pytest.fixture
def populated(index):
    index.index_workspace([
        spec("api/users.ts", USERS_TS),
        spec("app.ts", APP_TS),
        spec("util/fetch.py", "def fetch_all():\n    pass\n\ndef _fetch_one():\n    pass\n"),
    ])
    return index


class TestSearchSymbols:
    def test_exact_name(self, populated):
        found = populated.search_symbols("fetchUser")
        assert found[0].name == "fetchUser"
        assert found[0].file_path == "api/users.ts"

    def test_prefix(self, populated):
        names = {s.name for s in populated.search_symbols("User")}
        assert "UserCache" in names

    def test_kind_filter(self, populated):
        found = populated.search_symbols("UserCache", kinds=["function"])
        assert found == []
        assert populated.search_symbols("UserCache", kinds=["class"])[0].kind == "class"

    def test_exported_only(self, populated):
        names = {s.name for s in populated.search_symbols("fetch", exported_only=True)}
        assert "_fetch_one" not in names

    def test_limit(self, populated):
        assert len(populated.search_symbols("fetch", limit=1)) == 1

    def test_empty_query(self, populated):
        with pytest.raises(InvalidInputError):
            populated.search_symbols("  ")

    def test_unknown_kind(self, populated):
        with pytest.raises(InvalidInputError):
            populated.search_symbols("x", kinds=["widget"])

    def test_like_fallback(self, populated, manager):
        manager.open("project").fts["symbols"] = False
        found = populated.search_symbols("etchUs")
        assert [s.name for s in found] == ["fetchUser"]

    def test_other_scope_empty(self, populated):
        assert populated.search_symbols("fetchUser", scope="user") == []


class TestFileSymbols:
    def test_ordered_by_line(self, populated):
        lines = [s.start_line for s in populated.get_file_symbols("api/users.ts")["symbols"]]
        assert lines == sorted(lines)

    def test_without_imports(self, populated):
        data = populated.get_file_symbols("app.ts", include_imports=False)
        assert "imports" not in data

    def test_local_import_resolved(self, populated):
        imports = populated.get_file_symbols("app.ts")["imports"]
        target = populated.get_file_symbols("api/users.ts")["file"].id
        assert imports[0].import_path == "./api/users"
        assert imports[0].is_local
        assert imports[0].resolved_file_id == target

    def test_unknown_path(self, populated):
        with pytest.raises(NotFoundError):
            populated.get_file_symbols("nope.ts")


class TestFindReferences:
    def test_by_symbol_name(self, populated):
        refs = populated.find_references("fetchUser")
        assert [(r.name, r.file_path) for r in refs] == [("fetchUser", "api/users.ts")]

    def test_by_module(self, populated):
        refs = populated.find_references(module_path="api/users")
        assert [r.file_path for r in refs] == ["app.ts"]

    def test_both_arguments(self, populated):
        with pytest.raises(InvalidInputError):
            populated.find_references("fetchUser", "api/users")

    def test_neither_argument(self, populated):
        with pytest.raises(InvalidInputError):
            populated.find_references()
        with pytest.raises(InvalidInputError):
            populated.find_references("  ", "")


class TestSoftDelete:
    def test_hidden_until_cleanup(self, populated, manager):
        populated.mark_deleted("app.ts")
        with pytest.raises(NotFoundError):
            populated.get_file_symbols("app.ts")
        assert populated.find_references(module_path="api/users") == []
        assert populated.cleanup_deleted() == 1
        conn = manager.open("project").conn
        assert conn.execute("SELECT COUNT(*) FROM imports").fetchone()[0] == 1

    def test_mark_unknown(self, index):
        with pytest.raises(NotFoundError):
            index.mark_deleted("never.py")

    def test_reindex_revives(self, index):
        index.index_file("/ws/a.py", "a.py", "A = 1\n")
        index.mark_deleted("a.py")
        assert index.index_file("/ws/a.py", "a.py", "A = 1\n").status == "indexed"
        assert index.get_file_symbols("a.py")["file"].is_deleted is False


class TestStats:
    def test_counts(self, populated):
        stats = populated.get_index_stats()
        assert stats["files"] == 3
        assert stats["symbols"] == 6
        assert stats["imports"] == 2
        langs = {l["language"]: l for l in stats["languages"]}
        assert langs["typescript"]["file_count"] == 2
        assert langs["python"]["file_count"] == 1

    def test_without_breakdown(self, populated):
        assert "languages" not in populated.get_index_stats(False)

    def test_default_registry_shared(self, index):
        assert index.registry is default_registry()
