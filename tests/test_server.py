"""
Tests for codemem.mcp.server — argument parsing and server assembly.

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""

import pytest

from codemem.mcp.server import build_parser, create_server


class TestParser:
    def test_env_defaults(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CODEMEM_DB_ROOT", str(tmp_path / "db"))
        monkeypatch.setenv("CODEMEM_WORKSPACE", str(tmp_path / "ws"))
        args = build_parser().parse_args([])
        assert args.db_root == str(tmp_path / "db")
        assert args.workspace == str(tmp_path / "ws")
        assert args.audit_log is None

    def test_flag_beats_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CODEMEM_DB_ROOT", str(tmp_path / "env"))
        args = build_parser().parse_args(["--db-root", str(tmp_path / "flag")])
        assert args.db_root == str(tmp_path / "flag")


class TestCreateServer:
    def test_project_named_after_workspace(self, tmp_path):
        pytest.importorskip("mcp")
        ws = tmp_path / "shop-api"
        ws.mkdir()
        args = build_parser().parse_args([
            "--db-root", str(tmp_path / "db"), "--workspace", str(ws),
        ])
        mcp, manager = create_server(args)
        try:
            assert manager.project_name == "shop-api"
        finally:
            manager.close()
