import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

import book_stages
import generate_book
from book_pdf import PDFExportError
from book_project import BookStore
from fakes import TITLE, BookBackend, chapter_text, make_writer, write_book


def run_cli(argv, writer=None):
    with pytest.raises(SystemExit) as excinfo:
        generate_book.main(argv, writer=writer)
    return excinfo.value.code


def test_fresh_run_produces_a_complete_book(tmp_path):
    backend = BookBackend()

    project = generate_book.run_fresh(make_writer(backend), "fantasy", root=str(tmp_path))

    store = BookStore.for_title(TITLE, str(tmp_path))
    assert project.title == TITLE
    assert store.book_dir == tmp_path / "the_last_ember"
    assert store.load_genre() == "fantasy"
    assert store.load_title() == TITLE
    assert store.existing_chapter_count() == 3
    for number in (1, 2, 3):
        assert store.backup_path(number).read_text(encoding="utf-8") == chapter_text(number)
        assert store.load_summary(number) == f"Summary of chapter {number}."
    assert store.pdf_path(TITLE).read_bytes().startswith(b"%PDF")
    assert not list(tmp_path.glob("temp_*"))


def test_cli_fresh_run_with_topic_and_chapter_override(tmp_path, capsys):
    backend = BookBackend()

    generate_book.main(
        ["fantasy", "a drowned world", "2", "--no-enhance", "--output-dir", str(tmp_path)],
        writer=make_writer(backend),
    )

    store = BookStore.for_title(TITLE, str(tmp_path))
    assert store.load_concept() == "a drowned world"
    assert store.existing_chapter_count() == 2
    assert not any(store.backups_dir.iterdir())
    assert backend.prompts_for("compelling book concepts") == []
    assert "Book generation complete!" in capsys.readouterr().out


def test_cli_requires_a_genre(tmp_path):
    assert run_cli(["--output-dir", str(tmp_path)]) == 1


def test_cli_rejects_non_numeric_chapter_bounds(tmp_path):
    write_book(tmp_path, chapters=5)

    assert run_cli(["--enhance", TITLE, "three", "--output-dir", str(tmp_path)], make_writer(BookBackend())) == 1


def test_cli_reports_out_of_range_chapters(tmp_path, capsys):
    write_book(tmp_path, chapters=5)

    code = run_cli(["--enhance", TITLE, "4", "9", "--output-dir", str(tmp_path)], make_writer(BookBackend()))

    assert code == 1
    assert "Invalid chapter range 4-9" in capsys.readouterr().err


def test_cli_reports_missing_book(tmp_path):
    assert run_cli(["--pdf", "Nothing Here", "--output-dir", str(tmp_path)]) == 1


def test_cli_stage_failure_suggests_resuming(tmp_path, capsys):
    writer = make_writer(BookBackend(fail_on="write Chapter 2"))

    code = run_cli(["fantasy", "--no-enhance", "--output-dir", str(tmp_path)], writer)

    err = capsys.readouterr().err
    assert code == 1
    assert "Error during write of chapter 2" in err
    assert f'--generate-chapters "{TITLE}" 2' in err
    assert not list(tmp_path.glob("temp_*"))


def test_cli_rebuilds_pdf(tmp_path):
    store = write_book(tmp_path, chapters=2)

    generate_book.main(["--pdf", TITLE, "--output-dir", str(tmp_path)])

    assert store.pdf_path(TITLE).exists()


def test_resume_hint_finishes_a_book_with_a_chapter_override(tmp_path, capsys):
    failing = make_writer(BookBackend(fail_on="write Chapter 5"))

    code = run_cli(["fantasy", "a drowned world", "5", "--no-enhance", "--output-dir", str(tmp_path)], failing)

    assert code == 1
    assert f'--generate-chapters "{TITLE}" 5' in capsys.readouterr().err

    generate_book.main(
        ["--generate-chapters", TITLE, "5", "--output-dir", str(tmp_path)],
        writer=make_writer(BookBackend()),
    )

    store = BookStore.for_title(TITLE, str(tmp_path))
    assert store.load_chapter_count() == 5
    assert store.load_chapter(5) == chapter_text(5)
    assert store.pdf_path(TITLE).read_bytes().startswith(b"%PDF")


def test_cli_reports_pdf_failure_with_its_stage(tmp_path, capsys, monkeypatch):
    write_book(tmp_path, chapters=2)

    def broken_pdf(*_):
        raise PDFExportError("Unable to export PDF: font missing")

    monkeypatch.setattr(book_stages, "build_book_pdf", broken_pdf)

    assert run_cli(["--pdf", TITLE, "--output-dir", str(tmp_path)]) == 1
    assert "Error during compile: Unable to export PDF: font missing" in capsys.readouterr().err


def test_cli_reports_save_failure_with_its_chapter(tmp_path, capsys, monkeypatch):
    def full_disk(self, number, summary):
        raise OSError("No space left on device")

    monkeypatch.setattr(BookStore, "save_summary", full_disk)

    code = run_cli(["fantasy", "--no-enhance", "--output-dir", str(tmp_path)], make_writer(BookBackend()))

    err = capsys.readouterr().err
    assert code == 1
    assert "Error during summarize of chapter 1: No space left on device" in err
    assert f'--generate-chapters "{TITLE}" 1' in err
