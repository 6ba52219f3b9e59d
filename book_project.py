"""
In-memory book state and its on-disk layout.

Everything a run produces lives under ``output/<slug>/``; that directory is
the source of truth when a run is continued later. The dataclasses here are
working copies rebuilt from it.
"""

import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import book_config as config


class PersistenceWarning(Exception):
    """Raised when a non-essential file could not be written or removed."""


class BookNotFoundError(FileNotFoundError):
    """Raised when no output directory exists for a book title."""


def slugify(title: str, max_length: int = 50) -> str:
    """Lowercase, non-alphanumerics to '_', collapse runs, cap the length."""
    if not title:
        return "untitled_book"
    slug = re.sub(r"[^a-z0-9]", "_", title, flags=re.IGNORECASE)
    slug = re.sub(r"_+", "_", slug).lower()
    return slug[:max_length]


def count_words(text: str) -> int:
    return len(text.split())


@dataclass
class Chapter:
    number: int
    draft: str
    summary: str = ""
    enhanced: Optional[str] = None

    @property
    def original_word_count(self) -> int:
        return count_words(self.draft)

    @property
    def enhanced_word_count(self) -> int:
        return count_words(self.enhanced) if self.enhanced is not None else 0

    @property
    def text(self) -> str:
        """Canonical text: the accepted enhancement, else the draft."""
        return self.enhanced if self.enhanced is not None else self.draft


@dataclass
class BookProject:
    genre: str
    concept: str = ""
    title: str = ""
    outline: str = ""
    character_profiles: str = ""
    chapters: List[Chapter] = field(default_factory=list)
    enhance: bool = True
    requested_chapter_count: Optional[int] = None

    @property
    def slug(self) -> str:
        return slugify(self.title)

    @property
    def summaries(self) -> List[str]:
        """Running summaries in chapter order, as fed to later chapters."""
        return [f"Chapter {c.number}: {c.summary}" for c in self.chapters]

    def chapter(self, number: int) -> Chapter:
        return self.chapters[number - 1]

    def put_chapter(self, chapter: Chapter) -> None:
        """Append the next chapter or replace an existing one; gaps are refused."""
        if 1 <= chapter.number <= len(self.chapters):
            self.chapters[chapter.number - 1] = chapter
            return
        expected = len(self.chapters) + 1
        if chapter.number != expected:
            raise ValueError(f"Chapter {chapter.number} added out of order (expected {expected})")
        self.chapters.append(chapter)


class BookStore:
    """Reads and writes one book's files under ``<root>/<slug>/``."""

    def __init__(self, book_dir: Path):
        self.book_dir = Path(book_dir)

    @classmethod
    def for_title(cls, title: str, root: str = config.OUTPUT_DIR) -> "BookStore":
        return cls(Path(root) / slugify(title))

    @property
    def chapters_dir(self) -> Path:
        return self.book_dir / "chapters"

    @property
    def summaries_dir(self) -> Path:
        return self.book_dir / "summaries"

    @property
    def backups_dir(self) -> Path:
        return self.book_dir / "backups"

    def exists(self) -> bool:
        return self.book_dir.is_dir()

    def initialize(self) -> Path:
        for directory in (self.book_dir, self.chapters_dir, self.summaries_dir, self.backups_dir):
            directory.mkdir(parents=True, exist_ok=True)
        return self.book_dir

    # --- paths ---
    def chapter_path(self, number: int) -> Path:
        return self.chapters_dir / f"chapter_{number}.txt"

    def summary_path(self, number: int) -> Path:
        return self.summaries_dir / f"chapter_{number}_summary.txt"

    def backup_path(self, number: int) -> Path:
        return self.backups_dir / f"chapter_{number}_original.txt"

    def pdf_path(self, title: str) -> Path:
        safe_name = re.sub(r"\s+", "_", title).replace("/", "_").replace("\\", "_")
        return self.book_dir / f"{safe_name}.pdf"

    # --- writers ---
    def _write(self, path: Path, text: str) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path

    def save_concept(self, concept: str) -> Path:
        return self._write(self.book_dir / "book_concept.txt", concept)

    def save_title(self, title: str) -> Path:
        return self._write(self.book_dir / "title.txt", title)

    def save_genre(self, genre: str) -> Path:
        return self._write(self.book_dir / "genre.txt", genre)

    def save_outline(self, outline: str) -> Path:
        return self._write(self.book_dir / "book_outline.txt", outline)

    def save_character_profiles(self, profiles: str) -> Path:
        return self._write(self.book_dir / "character_profiles.txt", profiles)

    def save_chapter_count(self, count: int) -> Path:
        return self._write(self.book_dir / "chapter_count.txt", str(count))

    def save_chapter(self, number: int, text: str) -> Path:
        return self._write(self.chapter_path(number), text)

    def save_summary(self, number: int, summary: str) -> Path:
        return self._write(self.summary_path(number), summary)

    def backup_chapter(self, number: int, text: str) -> Path:
        return self._write(self.backup_path(number), text)

    def discard_backup(self, number: int) -> None:
        self.backup_path(number).unlink(missing_ok=True)

    def save_pdf(self, title: str, data: bytes) -> Path:
        path = self.pdf_path(title)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return path

    # --- readers ---
    def _read(self, name: str) -> Optional[str]:
        path = self.book_dir / name
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def load_concept(self) -> Optional[str]:
        return self._read("book_concept.txt")

    def load_title(self) -> Optional[str]:
        title = self._read("title.txt")
        return title.strip() if title else None

    def load_genre(self) -> Optional[str]:
        genre = self._read("genre.txt")
        return genre.strip() if genre and genre.strip() else None

    def load_outline(self) -> Optional[str]:
        return self._read("book_outline.txt")

    def load_character_profiles(self) -> Optional[str]:
        return self._read("character_profiles.txt")

    def load_chapter_count(self) -> Optional[int]:
        """The chapter count resolved by the fresh run, if it was saved."""
        count = self._read("chapter_count.txt")
        if count is None or not count.strip().isdigit():
            return None
        return int(count.strip()) or None

    def load_chapter(self, number: int) -> Optional[str]:
        path = self.chapter_path(number)
        return path.read_text(encoding="utf-8") if path.exists() else None

    def load_summary(self, number: int) -> Optional[str]:
        path = self.summary_path(number)
        return path.read_text(encoding="utf-8") if path.exists() else None

    def existing_chapter_count(self) -> int:
        """Number of chapter files present from chapter 1 without a gap."""
        count = 0
        while self.chapter_path(count + 1).exists():
            count += 1
        return count


class ScratchSpace:
    """Temporary directory for artifacts produced before the title is known."""

    def __init__(self, root: str = config.OUTPUT_DIR, token: str = ""):
        self.path = Path(root) / f"temp_{token}"

    def save(self, name: str, text: str) -> Path:
        try:
            self.path.mkdir(parents=True, exist_ok=True)
            target = self.path / name
            target.write_text(text, encoding="utf-8")
        except OSError as e:
            raise PersistenceWarning(f"Could not save {name} to temporary directory: {e}") from e
        return target

    def remove(self) -> None:
        if not self.path.exists():
            return
        try:
            shutil.rmtree(self.path)
        except OSError as e:
            raise PersistenceWarning(f"Could not remove temporary directory {self.path}: {e}") from e
