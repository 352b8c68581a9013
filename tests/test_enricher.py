"""
Tests for codemem.enricher — entity extraction and code-index linking.

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""

import pytest

from codemem.code_index import CodeIndex
from codemem.config import EnrichConfig, StoreConfig
from codemem.enricher import ContextEnricher, extract_entities
from codemem.knowledge import KnowledgeStore
from codemem.scopes import ScopeDatabaseManager


USERS_TS = """\
import { http } from './http';

export function fetchUser(id: string) {
  return http.get(`/users/${id}`);
}
"""

APP_TS = """\
import { fetchUser } from './api/users';

const main = () => fetchUser('1');
"""

SETTINGS_PY = """\
def load_settings(path):
    return {}

def parse_config(text):
    return {}
"""


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
    idx = CodeIndex(manager)
    idx.index_workspace([
        {"file_path": "/ws/api/users.ts", "relative_path": "api/users.ts", "content": USERS_TS},
        {"file_path": "/ws/app.ts", "relative_path": "app.ts", "content": APP_TS},
        {"file_path": "/ws/conf/settings.py", "relative_path": "conf/settings.py",
         "content": SETTINGS_PY},
    ])
    return idx


class BrokenIndex:
    def search_symbols(self, *args, **kwargs):
        raise RuntimeError("index locked")

    def find_references(self, *args, **kwargs):
        raise RuntimeError("index locked")


# ---------------------------------------------------------------------------
# extract_entities
# ---------------------------------------------------------------------------


class TestExtractEntities:
    def test_file_paths(self):
        ent = extract_entities("Changed src/api/users.ts and `lib/db.py` today")
        assert "src/api/users.ts" in ent.file_paths
        assert "lib/db.py" in ent.file_paths

    def test_import_mentions(self):
        ent = extract_entities("we now import from './http' and require('lodash')")
        assert ent.import_mentions == ["./http", "lodash"]

    def test_calls_and_classes(self):
        ent = extract_entities("Call parseConfig() before building a UserCache")
        assert "parseConfig" in ent.function_calls
        assert "UserCache" in ent.class_names

    def test_identifier_styles(self):
        ent = extract_entities("rename load_settings, keep MAX_RETRIES and fetchUser")
        assert ent.identifiers == ["load_settings", "MAX_RETRIES", "fetchUser"]

    def test_stoplist_and_short_names(self):
        ent = extract_entities("return get() if ok() else data()")
        assert ent.function_calls == []

    def test_plain_words_ignored(self):
        ent = extract_entities("remember to water the plants")
        assert ent.symbol_candidates() == []
        assert ent.path_candidates() == []

    def test_code_blocks(self):
        ent = extract_entities("Example:\n```ts\nconst x = fetchUser(id);\n```\n")
        assert ent.code_blocks == [{"language": "ts", "code": "const x = fetchUser(id);\n"}]
        assert "fetchUser" in ent.function_calls

    def test_inline_code(self):
        ent = extract_entities("use `retryPolicy` here")
        assert ent.inline_code == ["retryPolicy"]
        assert "retryPolicy" in ent.identifiers

    def test_empty(self):
        assert extract_entities("").symbol_candidates() == []

    def test_candidates_deduplicated(self):
        ent = extract_entities("fetchUser() then fetchUser again")
        assert ent.symbol_candidates().count("fetchUser") == 1


# ---------------------------------------------------------------------------
# enrich
# ---------------------------------------------------------------------------


class TestEnrich:
    def test_identifier_links_symbol(self, index):
        found = ContextEnricher(index).enrich("fetchUser caches results for five minutes")
        assert [(s.name, s.kind, s.file, s.line) for s in found.related_symbols] == [
            ("fetchUser", "function", "api/users.ts", 3)]
        assert found.related_files == ["api/users.ts"]

    def test_snake_case_symbol(self, index):
        found = ContextEnricher(index).enrich("parse_config rejects tabs")
        assert [s.file for s in found.related_symbols] == ["conf/settings.py"]

    def test_path_mention_finds_importers(self, index):
        found = ContextEnricher(index).enrich("the client in api/users.ts needs retries")
        assert found.related_files == ["app.ts", "api/users.ts"]

    def test_active_file_first(self, index):
        found = ContextEnricher(index).enrich("fetchUser is slow", active_file="app.ts")
        assert found.related_files[0] == "app.ts"
        assert "api/users.ts" in found.related_files

    def test_active_file_kept_with_zero_limit(self, index):
        enricher = ContextEnricher(index, EnrichConfig(file_limit=0))
        found = enricher.enrich("fetchUser", active_file="app.ts")
        assert found.related_files == ["app.ts"]

    def test_symbol_limit(self, index):
        enricher = ContextEnricher(index, EnrichConfig(symbol_limit=1))
        found = enricher.enrich("fetchUser and parse_config and load_settings")
        assert len(found.related_symbols) == 1

    def test_nothing_matches(self, index):
        found = ContextEnricher(index).enrich("remember to water the plants")
        assert found.related_files == []
        assert found.related_symbols == []

    def test_failing_index_is_skipped(self):
        found = ContextEnricher(BrokenIndex()).enrich("fetchUser lives in api/users.ts")
        assert found.related_symbols == []
        assert found.related_files == ["api/users.ts"]


class TestKnowledgeIntegration:
    def test_store_links_and_retrieves(self, manager, index):
        ks = KnowledgeStore(manager, enricher=ContextEnricher(index))
        entry = ks.store("project", "fetchUser caches results for five minutes")
        stored = ks.get("project", entry.id)
        assert stored.related_files == ["api/users.ts"]
        assert stored.related_symbols[0].name == "fetchUser"
        assert stored.related_symbols[0].file == "api/users.ts"

        by_file = ks.retrieve("project", "api/users.ts")
        assert entry.id in [e.id for e in by_file]

    def test_named_file_and_function(self, manager, index):
        ks = KnowledgeStore(manager, enricher=ContextEnricher(index))
        entry = ks.store("project", "use fetchUser from api/users.ts")
        assert ("fetchUser", "api/users.ts") in [
            (s.name, s.file) for s in entry.related_symbols]
        assert "api/users.ts" in entry.related_files

    def test_user_scope_untouched(self, manager, index):
        ks = KnowledgeStore(manager, enricher=ContextEnricher(index))
        entry = ks.store("user", "fetchUser caches results")
        assert entry.related_symbols == []
