"""
Tests for codemem.extractors — per-language symbol and import extraction.

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""

import pytest

from codemem.extractors import ExtractorRegistry, default_registry
from codemem.extractors.c_family import CExtractor, CppExtractor
from codemem.extractors.go import GoExtractor
from codemem.extractors.javascript import JavaScriptExtractor, TypeScriptExtractor
from codemem.extractors.jvm import CSharpExtractor, JavaExtractor, KotlinExtractor
from codemem.extractors.php import PhpExtractor
from codemem.extractors.python import PythonExtractor
from codemem.extractors.ruby import RubyExtractor
from codemem.extractors.rust import RustExtractor


def by_name(symbols):
    return {s.name: s for s in symbols}


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestRegistry:
    def test_lookup_by_extension(self):
        reg = default_registry()
        assert reg.language_for_path("src/app.ts") == "typescript"
        assert reg.language_for_path("lib/x.PY") == "python"
        assert reg.language_for_path("main.go") == "go"
        assert reg.language_for_path("README.md") is None

    def test_extractor_by_path(self):
        reg = default_registry()
        assert isinstance(reg.for_path("ui/App.tsx"), TypeScriptExtractor)
        assert reg.for_path("build.cob") is None

    def test_supports_editor_language_ids(self):
        assert TypeScriptExtractor().supports("typescriptreact")
        assert JavaScriptExtractor().supports("javascriptreact")
        assert not TypeScriptExtractor().supports("javascript")

    def test_extensions_listed(self):
        exts = default_registry().extensions
        for ext in (".js", ".ts", ".py", ".rs", ".go", ".java", ".kt", ".cs",
                    ".c", ".cpp", ".rb", ".php"):
            assert ext in exts

    def test_later_registration_wins(self):
        class Custom(PythonExtractor):
            @property
            def language_id(self):
                return "custom-python"

        reg = ExtractorRegistry([PythonExtractor(), Custom()])
        assert reg.language_for_path("a.py") == "custom-python"


# ---------------------------------------------------------------------------
# JavaScript / TypeScript
# ---------------------------------------------------------------------------

JS_SOURCE = """\
import { api } from './api';
const fs = require('fs');

/** Service for users. */
export class UserService {
  constructor(api) {
    this.api = api;
  }
  async getUser(id) {
    return this.api.get(id);
  }
}

export function fetchUser(id) {
  return fetch(`/users/${id}`);
}

const helper = (x) => x * 2;
export { helper };
"""


class TestJavaScript:
    @pytest.fixture
    def result(self):
        return JavaScriptExtractor().extract(JS_SOURCE)

    def test_symbols(self, result):
        syms = by_name(result[0])
        assert syms["UserService"].kind == "class"
        assert syms["fetchUser"].kind == "function"
        assert syms["helper"].kind == "function"
        assert syms["fs"].kind == "variable"
        assert "constructor" not in syms

    def test_method_in_class(self, result):
        m = by_name(result[0])["getUser"]
        assert m.kind == "method"
        assert m.container_name == "UserService"
        assert m.is_exported is False

    def test_exports(self, result):
        syms = by_name(result[0])
        assert syms["UserService"].is_exported
        assert syms["fetchUser"].is_exported
        # via export { helper }
        assert syms["helper"].is_exported
        assert not syms["fs"].is_exported

    def test_lines_and_extent(self, result):
        cls = by_name(result[0])["UserService"]
        assert cls.start_line == 5
        assert cls.end_line == 12
        assert cls.doc_comment == "Service for users."

    def test_imports(self, result):
        imports = {i.import_path: i for i in result[1]}
        assert imports["./api"].is_local is True
        assert imports["./api"].import_type == "import"
        assert imports["fs"].import_type == "require"
        assert imports["fs"].is_local is False
        assert imports["fs"].line_number == 2

    def test_locals_inside_function_not_top_level(self):
        src = "function outer() {\n  const inner = 1;\n}\n"
        names = [s.name for s in JavaScriptExtractor().extract(src)[0]]
        assert names == ["outer"]


class TestTypeScript:
    def test_ts_declarations(self):
        src = (
            "export interface User {\n  id: string;\n}\n"
            "export type Id = string;\n"
            "export enum Role { Admin, Guest }\n"
            "export function fetchUser() {}\n"
        )
        syms = by_name(TypeScriptExtractor().extract(src)[0])
        assert syms["User"].kind == "interface"
        assert syms["Id"].kind == "type"
        assert syms["Role"].kind == "enum"
        assert syms["fetchUser"].kind == "function"
        assert all(s.is_exported for s in syms.values())


# ---------------------------------------------------------------------------
# Python
# ---------------------------------------------------------------------------

PY_SOURCE = '''\
"""Module doc."""
import os, sys as system
from .utils import helper
MAX_SIZE = 10


class Greeter:
    """Say hello."""

    def greet(self, name):
        local = name
        return local


def _private():
    pass
'''


class TestPython:
    @pytest.fixture
    def result(self):
        return PythonExtractor().extract(PY_SOURCE)

    def test_symbols(self, result):
        syms = by_name(result[0])
        assert set(syms) == {"MAX_SIZE", "Greeter", "greet", "_private"}
        assert syms["MAX_SIZE"].kind == "constant"
        assert syms["Greeter"].kind == "class"
        assert syms["greet"].kind == "method"
        assert syms["greet"].container_name == "Greeter"
        assert syms["_private"].kind == "function"

    def test_export_by_underscore(self, result):
        syms = by_name(result[0])
        assert syms["Greeter"].is_exported
        assert not syms["_private"].is_exported

    def test_docstring(self, result):
        assert by_name(result[0])["Greeter"].doc_comment == "Say hello."

    def test_extent(self, result):
        cls = by_name(result[0])["Greeter"]
        assert cls.start_line == 7
        assert cls.end_line == 12

    def test_imports(self, result):
        imports = [(i.import_path, i.is_local) for i in result[1]]
        assert imports == [("os", False), ("sys", False), (".utils", True)]

    def test_strings_ignored(self):
        src = 'x = """\ndef not_real():\n    pass\n"""\n'
        assert [s.name for s in PythonExtractor().extract(src)[0]] == ["x"]

    def test_dynamic_import(self):
        src = "mod = importlib.import_module('plugins.csv')\n"
        imports = PythonExtractor().extract(src)[1]
        assert [(i.import_path, i.import_type) for i in imports] == [("plugins.csv", "dynamic")]


# ---------------------------------------------------------------------------
# Rust / Go
# ---------------------------------------------------------------------------


class TestRust:
    SOURCE = """\
use std::collections::HashMap;
use crate::config::Settings;

pub struct Cache {
    items: HashMap<String, String>,
}

impl Cache {
    pub fn new() -> Self {
        Cache { items: HashMap::new() }
    }
}

fn internal() {}
"""

    def test_symbols(self):
        syms = by_name(RustExtractor().extract(self.SOURCE)[0])
        assert syms["Cache"].kind == "struct"
        assert syms["Cache"].is_exported
        assert syms["new"].kind == "method"
        assert syms["new"].container_name == "Cache"
        assert syms["internal"].kind == "function"
        assert not syms["internal"].is_exported

    def test_imports(self):
        imports = RustExtractor().extract(self.SOURCE)[1]
        assert [(i.import_path, i.import_type, i.is_local) for i in imports] == [
            ("std::collections::HashMap", "use", False),
            ("crate::config::Settings", "use", True),
        ]


class TestGo:
    SOURCE = """\
package main

import (
\t"fmt"
\tstr "strings"
)

type Server struct {
\tName string
}

func (s *Server) Start() error {
\treturn nil
}

func helper() {}

const MaxConn = 10
"""

    def test_symbols(self):
        syms = by_name(GoExtractor().extract(self.SOURCE)[0])
        assert syms["Server"].kind == "struct"
        assert syms["Start"].kind == "method"
        assert syms["Start"].container_name == "Server"
        assert syms["Start"].is_exported
        assert syms["helper"].kind == "function"
        assert not syms["helper"].is_exported
        assert syms["MaxConn"].kind == "constant"

    def test_import_block(self):
        imports = GoExtractor().extract(self.SOURCE)[1]
        assert [i.import_path for i in imports] == ["fmt", "strings"]
        assert imports[0].line_number == 4

    def test_single_import(self):
        imports = GoExtractor().extract('import "net/http"\n')[1]
        assert [i.import_path for i in imports] == ["net/http"]


# ---------------------------------------------------------------------------
# JVM family
# ---------------------------------------------------------------------------


class TestJava:
    SOURCE = """\
package com.example;

import java.util.List;

public class UserService {
    private static final int MAX_USERS = 100;

    public User findUser(String id) {
        return repo.get(id);
    }
}
"""

    def test_symbols(self):
        syms = by_name(JavaExtractor().extract(self.SOURCE)[0])
        assert syms["UserService"].kind == "class"
        assert syms["UserService"].is_exported
        assert syms["MAX_USERS"].kind == "constant"
        assert not syms["MAX_USERS"].is_exported
        assert syms["findUser"].kind == "method"
        assert syms["findUser"].container_name == "UserService"
        assert "get" not in syms

    def test_imports(self):
        imports = JavaExtractor().extract(self.SOURCE)[1]
        assert [(i.import_path, i.is_local) for i in imports] == [("java.util.List", False)]


class TestKotlin:
    def test_symbols(self):
        src = (
            "import kotlinx.coroutines.launch\n"
            "const val TIMEOUT = 30\n"
            "data class User(val id: String)\n"
            "private fun hidden() {}\n"
            "fun visible(): Int = 1\n"
        )
        syms, imports = KotlinExtractor().extract(src)
        syms = by_name(syms)
        assert syms["TIMEOUT"].kind == "constant"
        assert syms["User"].kind == "class"
        assert not syms["hidden"].is_exported
        assert syms["visible"].is_exported
        assert [i.import_path for i in imports] == ["kotlinx.coroutines.launch"]


class TestCSharp:
    def test_symbols(self):
        src = (
            "using System.Text;\n"
            "namespace App.Services\n"
            "{\n"
            "    public class Mailer\n"
            "    {\n"
            "        public string Host { get; set; }\n"
            "        public void Send(string to)\n"
            "        {\n"
            "        }\n"
            "    }\n"
            "}\n"
        )
        syms, imports = CSharpExtractor().extract(src)
        syms = by_name(syms)
        assert syms["App.Services"].kind == "namespace"
        assert syms["Mailer"].kind == "class"
        assert syms["Host"].kind == "property"
        assert syms["Send"].kind == "method"
        assert syms["Send"].container_name == "Mailer"
        assert [(i.import_path, i.import_type) for i in imports] == [("System.Text", "use")]


# ---------------------------------------------------------------------------
# C family, Ruby, PHP
# ---------------------------------------------------------------------------


class TestC:
    def test_symbols_and_includes(self):
        src = (
            '#include <stdio.h>\n'
            '#include "util.h"\n'
            '#define BUF_SIZE 64\n'
            'struct point {\n'
            '    int x;\n'
            '};\n'
            'static int add(int a, int b) {\n'
            '    return a + b;\n'
            '}\n'
        )
        syms, imports = CExtractor().extract(src)
        syms = by_name(syms)
        assert syms["BUF_SIZE"].kind == "constant"
        assert syms["point"].kind == "struct"
        assert syms["add"].kind == "function"
        assert not syms["add"].is_exported
        assert [(i.import_path, i.is_local) for i in imports] == [
            ("stdio.h", False), ("util.h", True)]


class TestCpp:
    def test_out_of_line_method(self):
        src = (
            "namespace geo {\n"
            "class Shape {\n"
            "};\n"
            "}\n"
            "double Shape::area() const {\n"
            "    return 0;\n"
            "}\n"
        )
        syms = by_name(CppExtractor().extract(src)[0])
        assert syms["geo"].kind == "namespace"
        assert syms["Shape"].kind == "class"
        assert syms["area"].kind == "method"
        assert syms["area"].container_name == "Shape"


class TestRuby:
    def test_symbols(self):
        src = (
            "require 'json'\n"
            "require_relative 'helpers'\n"
            "module Billing\n"
            "  RATE = 3\n"
            "  class Invoice\n"
            "    def total\n"
            "      1\n"
            "    end\n"
            "  end\n"
            "end\n"
        )
        syms, imports = RubyExtractor().extract(src)
        syms = by_name(syms)
        assert syms["Billing"].kind == "module"
        assert syms["RATE"].kind == "constant"
        assert syms["Invoice"].container_name == "Billing"
        assert syms["total"].kind == "method"
        assert syms["total"].container_name == "Invoice"
        assert [(i.import_path, i.is_local) for i in imports] == [
            ("json", False), ("helpers", True)]


class TestPhp:
    def test_symbols(self):
        src = (
            "<?php\n"
            "namespace App\\Http;\n"
            "use App\\Models\\User;\n"
            "class Controller {\n"
            "    private $cache;\n"
            "    public function index() {\n"
            "    }\n"
            "}\n"
        )
        syms, imports = PhpExtractor().extract(src)
        syms = by_name(syms)
        assert syms["Controller"].kind == "class"
        assert syms["cache"].kind == "property"
        assert not syms["cache"].is_exported
        assert syms["index"].kind == "method"
        assert [(i.import_path, i.import_type) for i in imports] == [
            ("App\\Models\\User", "use")]
