"""
Resume a book from the files a previous run left in ``output/<slug>/``.

Three entry points re-enter the pipeline without repeating earlier stages:
PDF only, enhance a chapter range, and (re)generate a chapter range. The
directory is the source of truth; the BookProject built here is a working copy
of it.
"""

from pathlib import Path
from typing import Optional, Tuple

import book_config as config
from book_project import BookNotFoundError, BookProject, BookStore, Chapter
from book_stages import (
    BookWriter,
    compile_book,
    enhance_chapters,
    extract_chapter_count,
    write_chapters,
)
from response_sanitizer import extract_title_from_outline


class RangeError(ValueError):
    """Raised when a chapter range falls outside the book."""


def validate_chapter_range(start: Optional[int], end: Optional[int], chapter_count: int) -> Tuple[int, int]:
    """Fill in defaults and check ``1 <= start <= end <= chapter_count``."""
    start = 1 if start is None else start
    end = chapter_count if end is None else end
    if not (1 <= start <= end <= chapter_count):
        raise RangeError(
            f"Invalid chapter range {start}-{end}: the book has {chapter_count} chapter(s), "
            f"so the range must satisfy 1 <= start <= end <= {chapter_count}"
        )
    return start, end


def open_book(title: str, root: str = config.OUTPUT_DIR) -> BookStore:
    store = BookStore.for_title(title, root)
    if not store.exists():
        raise BookNotFoundError(f"No book found for '{title}' (looked in {store.book_dir})")
    return store


def load_book(store: BookStore, title: str = "") -> BookProject:
    """Rebuild a BookProject from its directory."""
    genre = store.load_genre()
    if not genre:
        print(f"Warning: Could not recover the genre; using '{config.DEFAULT_GENRE}'.", flush=True)
        genre = config.DEFAULT_GENRE

    outline = store.load_outline() or ""
    book_title = store.load_title() or title or extract_title_from_outline(outline)

    project = BookProject(
        genre=genre,
        concept=store.load_concept() or "",
        title=book_title,
        outline=outline,
        character_profiles=store.load_character_profiles() or "",
        requested_chapter_count=store.load_chapter_count(),
    )

    for number in range(1, store.existing_chapter_count() + 1):
        canonical = store.load_chapter(number)
        backup_path = store.backup_path(number)
        chapter = Chapter(number=number, draft=canonical, summary=store.load_summary(number) or "")
        if backup_path.exists():
            chapter.draft = backup_path.read_text(encoding="utf-8")
            chapter.enhanced = canonical
        project.put_chapter(chapter)

    print(
        f"Loaded '{project.title}' ({project.genre}) with {len(project.chapters)} chapter(s) from {store.book_dir}",
        flush=True,
    )
    return project


def _require_prior_summaries(project: BookProject, start: int) -> None:
    missing = [c.number for c in project.chapters[: start - 1] if not c.summary.strip()]
    if missing:
        raise FileNotFoundError(
            f"Missing summaries for chapter(s) {', '.join(map(str, missing))}; "
            f"regenerate from chapter {missing[0]} to restore continuity"
        )


def compile_only(title: str, root: str = config.OUTPUT_DIR) -> Path:
    store = open_book(title, root)
    project = load_book(store, title)
    if not project.chapters:
        raise FileNotFoundError(f"No chapters found in {store.chapters_dir}")
    return compile_book(project, store)


def enhance_only(
    writer: BookWriter,
    title: str,
    start: Optional[int] = None,
    end: Optional[int] = None,
    root: str = config.OUTPUT_DIR,
) -> Path:
    """Enhance chapters ``start..end`` of an existing book, then rebuild its PDF."""
    store = open_book(title, root)
    project = load_book(store, title)
    start, end = validate_chapter_range(start, end, len(project.chapters))
    _require_prior_summaries(project, start)

    print(f"\nEnhancing chapters {start} to {end}...", flush=True)
    accepted = enhance_chapters(writer, project, store, start, end)
    print(f"Enhanced {len(accepted)} of {end - start + 1} chapter(s).", flush=True)
    return compile_book(project, store)


def generate_chapters_only(
    writer: BookWriter,
    title: str,
    start: Optional[int] = None,
    end: Optional[int] = None,
    root: str = config.OUTPUT_DIR,
) -> Optional[Path]:
    """(Re)write chapters ``start..end`` from the saved outline and profiles.

    The upper bound is the chapter count saved by the fresh run, else the one
    resolved from the saved outline.
    Chapters before ``start`` must already exist with summaries.
    """
    store = open_book(title, root)
    project = load_book(store, title)
    if not project.outline:
        raise FileNotFoundError(f"No outline found in {store.book_dir}; start a fresh run instead")

    resolved = extract_chapter_count(project.outline, project.requested_chapter_count)
    chapter_count = max(resolved, len(project.chapters))
    start, end = validate_chapter_range(start, end, chapter_count)
    if start > len(project.chapters) + 1:
        raise RangeError(
            f"Cannot start at chapter {start}: only chapters 1-{len(project.chapters)} exist, "
            f"so generation must start at or before chapter {len(project.chapters) + 1}"
        )
    _require_prior_summaries(project, start)

    print(f"\nGenerating chapters {start} to {end}...", flush=True)
    write_chapters(writer, project, store, start, end)

    if len(project.chapters) < chapter_count:
        print(
            f"{len(project.chapters)} of {chapter_count} chapters written; "
            f"run --generate-chapters again to finish before building the PDF.",
            flush=True,
        )
        return None
    return compile_book(project, store)
