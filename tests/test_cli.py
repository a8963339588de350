"""End-to-end CLI tests with a fake model gateway."""
import pytest

from docqa import config
from docqa.cli import build_parser, run
from docqa.services import create_services

from conftest import FakeGateway


@pytest.fixture
def cli(tmp_path, monkeypatch):
    """Run one CLI command against fresh services over the same data dir."""
    monkeypatch.setattr(config, "EMBEDDING_DIMENSION", None)
    gateway = FakeGateway()
    data_dir = tmp_path / "data"

    async def invoke(*argv, client=None):
        args = build_parser().parse_args(["--data-dir", str(data_dir), *argv])
        services = create_services(data_dir=data_dir, client=client or gateway)
        return await run(args, services)

    invoke.gateway = gateway
    return invoke


@pytest.fixture
def docs(tmp_path):
    directory = tmp_path / "docs"
    directory.mkdir()
    (directory / "ravens.txt").write_text("Ravens are clever birds.", encoding="utf-8")
    (directory / "owls.md").write_text("Owls hunt at night.", encoding="utf-8")
    return directory


async def test_ingest_then_stats(cli, docs, capsys):
    assert await cli("ingest", str(docs)) == 0
    out = capsys.readouterr().out
    assert "Files processed:   2" in out
    assert "Chunks created:    2" in out

    assert await cli("stats") == 0
    out = capsys.readouterr().out
    assert "Vectors:          2" in out
    assert "Documents:        2" in out
    assert "ravens.txt" in out


async def test_search_prints_matches(cli, docs, capsys):
    await cli("ingest", str(docs))
    capsys.readouterr()

    assert await cli("search", "clever birds", "-n", "1") == 0

    out = capsys.readouterr().out
    assert "[1] " in out
    assert "[2]" not in out


async def test_search_empty_index(cli, capsys):
    assert await cli("search", "anything") == 0
    assert "No results." in capsys.readouterr().out


async def test_ask_prints_answer_and_sources(cli, docs, capsys):
    await cli("ingest", str(docs))
    capsys.readouterr()

    assert await cli("ask", "Are ravens clever?") == 0

    out = capsys.readouterr().out
    assert "The answer." in out
    assert "Sources:" in out
    assert "[2]" in out


async def test_delete_document(cli, docs, tmp_path, capsys):
    await cli("ingest", str(docs / "ravens.txt"))
    services = create_services(data_dir=tmp_path / "data", client=cli.gateway)
    await services.index.init()
    [document] = services.index.list_documents()
    capsys.readouterr()

    assert await cli("delete", document["id"]) == 0
    assert "1 chunk(s)" in capsys.readouterr().out

    assert await cli("delete", document["id"]) == 1
    assert "Document not found" in capsys.readouterr().out


async def test_rebuild_clears_previous_documents(cli, docs, capsys):
    await cli("ingest", str(docs))
    await cli("ingest", str(docs / "owls.md"), "--rebuild")
    capsys.readouterr()

    await cli("stats")

    out = capsys.readouterr().out
    assert "Documents:        1" in out
    assert "Vectors:          1" in out


async def test_missing_path_is_reported(cli, tmp_path, capsys):
    assert await cli("ingest", str(tmp_path / "missing.txt")) == 1
    assert "Path not found" in capsys.readouterr().out


async def test_failed_file_sets_exit_code(cli, tmp_path, capsys):
    path = tmp_path / "empty.txt"
    path.write_text("   ", encoding="utf-8")

    assert await cli("ingest", str(path)) == 1
    assert "Files failed:      1" in capsys.readouterr().out


async def test_empty_question_is_reported(cli, capsys):
    assert await cli("ask", "  ") == 1
    assert "Error:" in capsys.readouterr().out


class WideGateway(FakeGateway):
    """Stands in for a different embedding model with a 4-d output."""

    async def embed(self, text):
        return (await super().embed(text)) + [1.0]


async def test_changed_model_dimension_needs_rebuild(cli, docs, capsys):
    await cli("ingest", str(docs))
    capsys.readouterr()

    assert await cli("ingest", str(docs / "owls.md"), client=WideGateway()) == 1
    assert "dimension mismatch" in capsys.readouterr().out


async def test_rebuild_recovers_from_changed_model_dimension(cli, docs, capsys):
    await cli("ingest", str(docs))
    wide = WideGateway()
    capsys.readouterr()

    assert await cli("ingest", str(docs / "owls.md"), "--rebuild", client=wide) == 0
    assert await cli("stats", client=wide) == 0

    out = capsys.readouterr().out
    assert "Dimension:        4" in out
    assert "Documents:        1" in out
    assert await cli("search", "owls", client=wide) == 0
