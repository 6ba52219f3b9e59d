import re
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from book_project import BookStore
from book_stages import BookWriter
from generation_client import GenerationClient

TITLE = "The Last Ember"
CONCEPT = "A lighthouse keeper guards the last fire in a drowned world."
PROFILES = "Mara Vell: the last lighthouse keeper, stubborn and patient."


def outline_for(chapters: int) -> str:
    lines = [f"Title: {TITLE}", "", f"The story is told in {chapters} chapters.", ""]
    lines += [f"Chapter {n}: The tide rises again." for n in range(1, chapters + 1)]
    return "\n".join(lines)


def chapter_text(number: int, words: int = 50) -> str:
    return f"Chapter {number}\n\n" + "word " * words


class ScriptedBackend:
    """Replays a script: strings and chunk lists are streamed, exceptions are raised."""

    def __init__(self, script):
        self.script = list(script)
        self.calls = []

    def stream(self, messages):
        self.calls.append(messages)
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, str):
            item = [item]
        for chunk in item:
            yield chunk


class BookBackend:
    """Answers each pipeline prompt with a small canned response."""

    def __init__(self, outline: str = None, enhance_words: int = 120, fail_on: str = None):
        self.outline = outline or outline_for(3)
        self.enhance_words = enhance_words
        self.fail_on = fail_on
        self.calls = []

    def stream(self, messages):
        system, user = messages[0]["content"], messages[-1]["content"]
        self.calls.append((system, user))
        if self.fail_on and self.fail_on in system:
            raise RuntimeError("backend unavailable")
        yield self.respond(system, user)

    def respond(self, system: str, user: str) -> str:
        if "book title creator" in system:
            return TITLE
        if "compelling book concepts" in system:
            return CONCEPT
        if "master of story structure" in system:
            return self.outline
        if "character development" in system:
            return PROFILES
        if "compressing information" in system:
            return "Compressed context."
        if "developmental editor" in system:
            number = re.search(r"CHAPTER (\d+) \(ORIGINAL TEXT\)", user).group(1)
            return f"Chapter {number}\n\n" + "richer " * self.enhance_words
        written = re.search(r"write Chapter (\d+)", system)
        if written:
            return chapter_text(int(written.group(1)))
        if "professional editor specializing" in system:
            number = re.search(r"Chapter (\d+)", user).group(1)
            return f"Summary of chapter {number}."
        raise AssertionError(f"Unexpected prompt: {system[:80]}")

    def prompts_for(self, fragment: str):
        return [user for system, user in self.calls if fragment in system]


def make_client(backend, max_retries: int = 2) -> GenerationClient:
    return GenerationClient(backend, max_retries=max_retries, retry_delay=0, echo=False, sleep=lambda _: None)


def make_writer(backend, budgeter=None) -> BookWriter:
    return BookWriter(make_client(backend), budgeter=budgeter)


def write_book(root, chapters: int = 5, outline_chapters: int = None, genre: str = "fantasy", summaries: bool = True):
    """Lay out a previously generated book under ``root``."""
    store = BookStore.for_title(TITLE, str(root))
    store.initialize()
    store.save_title(TITLE)
    if genre:
        store.save_genre(genre)
    store.save_concept(CONCEPT)
    store.save_outline(outline_for(outline_chapters or chapters))
    store.save_character_profiles(PROFILES)
    for number in range(1, chapters + 1):
        store.save_chapter(number, chapter_text(number))
        if summaries:
            store.save_summary(number, f"Summary of chapter {number}.")
    return store
