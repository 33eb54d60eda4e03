import argparse
import json

import pytest

from emqu.cli import create_parser, main, positive_int
from emqu.database import Database

from tests.conftest import fake_embed


def test_chunk_command(corpus, tmp_path, capsys):
    out = tmp_path / "chunks"

    code = main(["chunk", str(corpus / "*"), str(out), "--no-headers"])

    assert code == 0
    assert len(list(out.iterdir())) == 4
    assert (out / "a_deploy-0001.txt").read_text(encoding="utf-8") == "Deploy with the release script.\n"
    assert "Successfully chunked 3 document(s)" in capsys.readouterr().out


def test_embed_and_query_commands(corpus, tmp_path, capsys):
    database_path = str(tmp_path / "index.json")

    assert main(["embed", str(corpus / "*"), database_path, "-w", "2"], embed_fn=fake_embed) == 0
    assert len(Database.load(database_path)) == 4
    capsys.readouterr()

    code = main(
        ["query", "-t", "2", database_path, "Retention: old logs are kept for thirty days"],
        embed_fn=fake_embed,
    )

    output = capsys.readouterr().out
    assert code == 0
    assert output.startswith("#1 [1.0000] ")
    assert "## Retention\nOld logs are kept for thirty days." in output
    assert "#2 " in output
    assert "#3 " not in output


def test_query_empty_database(tmp_path, capsys):
    database_path = str(tmp_path / "empty.json")
    Database().save(database_path)

    assert main(["query", database_path, "anything"]) == 0
    assert "No results." in capsys.readouterr().out


def test_missing_input_exit_code(tmp_path, capsys):
    code = main(["embed", str(tmp_path / "nothing" / "*.txt"), str(tmp_path / "i.json")], embed_fn=fake_embed)

    assert code == 3
    assert "No files match" in capsys.readouterr().err


def test_provider_error_exit_code(corpus, tmp_path):
    code = main(["embed", str(corpus / "*"), str(tmp_path / "i.json")])

    assert code == 4
    assert not (tmp_path / "i.json").exists()


def test_corrupt_database_exit_code(tmp_path, capsys):
    path = tmp_path / "index.json"
    path.write_text(json.dumps({"records": [
        {"source_path": "a", "text": "x", "embedding": [1.0, 0.0]},
        {"source_path": "b", "text": "y", "embedding": [1.0]},
    ]}), encoding="utf-8")

    assert main(["query", str(path), "q"], embed_fn=fake_embed) == 5
    assert "Error: " in capsys.readouterr().err


def test_dimension_mismatch_exit_code(tmp_path):
    path = str(tmp_path / "index.json")
    Database.from_dict({"records": [{"source_path": "a", "text": "x", "embedding": [1.0, 0.0]}]}).save(path)

    assert main(["query", path, "q"], embed_fn=fake_embed) == 6


def test_unreadable_database_exit_code(tmp_path):
    assert main(["query", str(tmp_path / "missing.json"), "q"], embed_fn=fake_embed) == 1


def test_bad_environment_exit_code(tmp_path, monkeypatch):
    monkeypatch.setenv("EMQU_WORKERS", "many")

    assert main(["chunk", str(tmp_path / "*"), str(tmp_path / "out")]) == 2


def test_skip_unreadable_flag(tmp_path):
    (tmp_path / "good.txt").write_text("fine text", encoding="utf-8")
    (tmp_path / "bad.txt").write_bytes(b"\xff\xfe\xfa")
    database_path = str(tmp_path / "out" / "index.json")

    assert main(["embed", str(tmp_path / "*.txt"), database_path], embed_fn=fake_embed) == 3
    assert main(
        ["embed", str(tmp_path / "*.txt"), database_path, "--skip-unreadable"],
        embed_fn=fake_embed,
    ) == 0
    assert [r.text for r in Database.load(database_path)] == ["fine text"]


@pytest.mark.parametrize("argv", [
    ["query", "-t", "0", "index.json", "q"],
    ["query", "-t", "two", "index.json", "q"],
    ["embed", "*.txt"],
    [],
])
def test_invalid_arguments(argv):
    with pytest.raises(SystemExit) as excinfo:
        create_parser().parse_args(argv)
    assert excinfo.value.code == 2


def test_reads_env_file_in_working_directory(tmp_path, monkeypatch):
    (tmp_path / "a.txt").write_text("some text", encoding="utf-8")
    (tmp_path / ".env").write_text("EMQU_WORKERS=bogus\n", encoding="utf-8")
    monkeypatch.setenv("EMQU_WORKERS", "")
    monkeypatch.delenv("EMQU_WORKERS")
    monkeypatch.chdir(tmp_path)

    assert main(["chunk", "*.txt", "out"]) == 2
    assert not (tmp_path / "out").exists()


def test_positive_int_error_has_no_chained_context():
    with pytest.raises(argparse.ArgumentTypeError) as excinfo:
        positive_int("two")

    assert excinfo.value.__cause__ is None
    assert excinfo.value.__suppress_context__


def test_out_of_range_embedding_exit_code(tmp_path):
    path = tmp_path / "index.json"
    path.write_text(
        '{"records": [{"source_path": "a", "text": "x", "embedding": [1' + "0" * 400 + "]}]}",
        encoding="utf-8",
    )

    assert main(["query", str(path), "q"], embed_fn=fake_embed) == 5
