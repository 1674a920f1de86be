from __future__ import annotations

from pathlib import Path

import pytest

from scripts import init_documents


def test_creates_documents_and_prints_summary(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = init_documents.main(["--data-dir", str(tmp_path)])

    out = capsys.readouterr().out
    assert exit_code == 0
    assert (tmp_path / "camiseta-voting.json").exists()
    assert (tmp_path / "merchandise.json").exists()
    assert "Voting: 0 votes (design_1=0, design_2=0), 0/20 pre-orders" in out
    assert "Merchandise: 5 items, 4 in stock" in out


def test_reports_malformed_document(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    (tmp_path / "merchandise.json").write_text("[", encoding="utf-8")

    exit_code = init_documents.main(["--data-dir", str(tmp_path)])

    assert exit_code == 1
    assert "ERROR" in capsys.readouterr().err
