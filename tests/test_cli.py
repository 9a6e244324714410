"""
Command-line front end tests.
Each command runs in-process against a temporary SQLite registry.
"""

import json
import os

import pytest
from unittest.mock import patch

from soul_registry.cli import main

from conftest import BASE_VECTOR, family_vector


def _package(name, vector=None):
    return {
        "name": name,
        "version": "1.0.0",
        "feature_vector": list(vector if vector is not None else BASE_VECTOR),
        "topology": {"count": 10, "clustering": 0.5, "modularity": 0.4},
    }


@pytest.fixture
def registry_env(test_db):
    """Point the configured store at a fresh SQLite file."""
    with patch.dict(os.environ, {"STORE_PROVIDER": "sqlite", "DB_PATH": test_db}):
        yield test_db


@pytest.fixture
def seeded_files(registry_env, tmp_path):
    pairs = tmp_path / "pairs.json"
    pairs.write_text(json.dumps([
        {"npm": _package("lodash"), "crate": _package("lodash-rs")},
        {"npm": _package("request", family_vector(40)), "crate": _package("reqwest-bad", family_vector(40, 3.0))},
        {"npm": _package("hyper", family_vector(40, 0.2))},
    ]))

    package_json = tmp_path / "package.json"
    package_json.write_text(json.dumps({
        "name": "my-app",
        "dependencies": {"lodash": "^4.17.0", "request": "^2.88.0"},
        "devDependencies": {"unknownpkg": "^1.0.0", "lodash": "^4.17.0"},
    }))

    assert main(["register", str(pairs)]) == 0
    return tmp_path


class TestCommands:
    """Exit codes and output for each subcommand."""

    def test_resolve(self, seeded_files, capsys):
        assert main(["--json", "resolve", "lodash"]) == 0

        data = json.loads(capsys.readouterr().out)
        assert data["target"]["name"] == "lodash-rs"
        assert data["similarity_score"] == 1.0

    def test_resolve_not_found(self, seeded_files, capsys):
        assert main(["resolve", "left-pad"]) == 1
        assert "crate:left-pad-soul" in capsys.readouterr().out

    def test_alternatives(self, seeded_files, capsys):
        assert main(["--json", "alternatives", "request", "-t", "0.5"]) == 0

        data = json.loads(capsys.readouterr().out)
        assert [a["key"] for a in data] == ["npm:hyper"]

    def test_verify(self, seeded_files, capsys):
        assert main(["verify", "lodash", "lodash-rs"]) == 0
        assert "Verified npm:lodash <-> crate:lodash-rs" in capsys.readouterr().out

        assert main(["verify", "request", "reqwest-bad"]) == 1
        assert main(["verify", "lodash", "nope"]) == 1

    def test_analyze(self, seeded_files, capsys):
        assert main(["--json", "analyze", str(seeded_files / "package.json")]) == 0

        data = json.loads(capsys.readouterr().out)
        assert [r["name"] for r in data["perfect"]] == ["lodash"]
        assert [r["name"] for r in data["replace"]] == ["request"]
        assert [r["name"] for r in data["transmute"]] == ["unknownpkg"]

    def test_generate(self, seeded_files):
        output = seeded_files / "mirror.json"
        assert main(["generate", str(seeded_files / "package.json"), "-o", str(output)]) == 0

        config = json.loads(output.read_text())
        assert list(config["mappings"]) == ["lodash"]
        assert config["parasite_replacements"] == {"request": "hyper"}
        assert config["auto_transmute"] == ["unknownpkg"]

    def test_stats(self, seeded_files, capsys):
        assert main(["--json", "stats"]) == 0

        data = json.loads(capsys.readouterr().out)
        assert data["total_souls"] == 3
        assert data["crate_packages"] == 2

    def test_purge(self, seeded_files, capsys):
        main(["--json", "resolve", "lodash"])
        phash = json.loads(capsys.readouterr().out)["phash"]

        assert main(["purge", phash]) == 0
        assert main(["purge", phash]) == 1
        assert main(["resolve", "lodash"]) == 1


class TestErrors:
    """Bad input and registry errors map to non-zero exit codes."""

    def test_missing_file(self, registry_env, tmp_path, capsys):
        assert main(["analyze", str(tmp_path / "missing.json")]) == 1
        assert "ERROR" in capsys.readouterr().err

    def test_invalid_register_document(self, registry_env, tmp_path):
        bad = tmp_path / "bad.json"
        bad.write_text(json.dumps({"npm": {"name": "x", "version": "latest", "feature_vector": BASE_VECTOR}}))
        assert main(["register", str(bad)]) == 1

    def test_dimension_mismatch(self, registry_env, tmp_path, capsys):
        short = tmp_path / "short.json"
        short.write_text(json.dumps({"npm": _package("short", [1.0, 2.0, 3.0])}))

        assert main(["register", str(short)]) == 2
        assert "dimension mismatch" in capsys.readouterr().err

    def test_conflict_and_replace(self, seeded_files):
        changed = seeded_files / "changed.json"
        changed.write_text(json.dumps({"npm": _package("lodash", family_vector(9))}))

        assert main(["register", str(changed)]) == 2
        assert main(["register", "--replace", str(changed)]) == 0

    @pytest.mark.parametrize("document", [[1], ["lodash"], [None]])
    def test_non_object_register_entry(self, registry_env, tmp_path, capsys, document):
        bad = tmp_path / "entries.json"
        bad.write_text(json.dumps(document))

        assert main(["register", str(bad)]) == 1
        assert "ERROR" in capsys.readouterr().err
