"""
Generation stages for a full book.

Concept -> title -> outline -> chapter count -> character profiles -> for each
chapter (prepare context, write, summarize) -> optional enhancement -> PDF.

Every stage depends on the output of the one before it, and chapters are
written strictly in order because chapter N is written from the summaries of
chapters 1..N-1.
"""

import re
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

import book_config as config
from book_pdf import PDFExportError, build_book_pdf
from book_project import BookProject, BookStore, Chapter, count_words
from context_budget import ContextBudgeter, ContextBundle
from generation_client import GenerationClient, GenerationFailure, build_messages
from response_sanitizer import ResponseSanitizer, clean_title

_SPELLED_COUNTS = {"ten": 10, "twelve": 12, "fifteen": 15}
_EXPLICIT_COUNT = re.compile(r"\b(\d+|ten|twelve|fifteen)\s+chapters\b", re.IGNORECASE)
_CHAPTER_MARKER = re.compile(
    r"\bchapter\s+(\d+|one|two|three|four|five|six|seven|eight|nine|ten|eleven|twelve|thirteen"
    r"|fourteen|fifteen|sixteen|seventeen|eighteen|nineteen|twenty)\b",
    re.IGNORECASE,
)


class StageError(RuntimeError):
    """A fatal failure, tagged with the stage (and chapter) it happened in."""

    def __init__(self, stage: str, cause: BaseException, chapter: Optional[int] = None):
        where = f"{stage} (chapter {chapter})" if chapter is not None else stage
        super().__init__(f"{where} failed: {cause}")
        self.stage = stage
        self.chapter = chapter
        self.cause = cause
        # Set by the driver once the book has a title, for the resume hint
        self.title: Optional[str] = None


@contextmanager
def stage(name: str, chapter: Optional[int] = None) -> Iterator[None]:
    """Tag generation, file and PDF failures with the stage they happened in."""
    try:
        yield
    except (GenerationFailure, PDFExportError, OSError) as e:
        raise StageError(name, e, chapter) from e


def extract_chapter_count(outline: str, override: Optional[int] = None) -> int:
    """Resolve how many chapters to write.

    A caller override always wins. Otherwise an explicit "<N> chapters"
    statement is used, then the number of distinct "Chapter <n>" markers,
    then the default of 10.
    """
    if override:
        return override

    explicit = _EXPLICIT_COUNT.search(outline)
    if explicit:
        value = explicit.group(1).lower()
        count = _SPELLED_COUNTS.get(value) or int(value)
        if count > 0:
            return count

    markers = {re.sub(r"\s+", " ", m.group(0).lower()) for m in _CHAPTER_MARKER.finditer(outline)}
    if markers:
        return len(markers)

    print(
        f"Warning: Could not detect a chapter count in the outline; defaulting to {config.DEFAULT_CHAPTER_COUNT}.",
        flush=True,
    )
    return config.DEFAULT_CHAPTER_COUNT


def is_enhancement_accepted(
    original: str, enhanced: str, min_growth: float = config.ENHANCEMENT_MIN_GROWTH
) -> bool:
    """True when the enhanced text grew by at least ``min_growth`` in words."""
    original_words = count_words(original)
    if original_words == 0:
        return False
    return count_words(enhanced) / original_words >= min_growth


class BookWriter:
    """Issues the generation call for each stage.

    The client, sanitizer and budgeter are injected so tests (and other
    backends) can swap any of them.
    """

    def __init__(
        self,
        client: GenerationClient,
        sanitizer: Optional[ResponseSanitizer] = None,
        budgeter: Optional[ContextBudgeter] = None,
    ):
        self.client = client
        self.sanitizer = sanitizer or ResponseSanitizer()
        self.budgeter = budgeter or ContextBudgeter(client, self.sanitizer)

    def _ask(self, system: str, user: str) -> str:
        messages = build_messages(system, user)
        return self.sanitizer.clean(self.client.complete(messages), messages)

    def generate_concept(self, genre: str) -> str:
        print(f"Generating a book concept for {genre} genre...", flush=True)
        return self._ask(
            system=f"""You are a professional {genre} author with expertise in creating compelling book concepts.
Generate a high-level overview for a {genre} book, including a potential title, main premise, and key themes.
Be creative and original. The concept should be suitable for a book of approximately 300 pages.
IMPORTANT: Do not include your thought process in the response. Provide only the final concept.""",
            user=f"""Create an original and engaging book concept for the {genre} genre.
Include a potential title and a brief 1-2 paragraph overview of what the book would be about.
Return only the final concept without any explanations of your process.""",
        )

    def generate_title(self, genre: str, concept: str) -> str:
        print("Generating a specific title for the book...", flush=True)
        response = self._ask(
            system=f"""You are a professional book title creator with expertise in the {genre} genre.
Your task is to create a compelling, marketable title for a book based on the provided concept.
IMPORTANT: Return ONLY the title itself, with no explanation, reasoning, or commentary.
The title should be short (1-5 words) and memorable.""",
            user=f"""Based on this book concept: "{concept[:config.TITLE_CONCEPT_EXCERPT]}"

Create an original, compelling title for this {genre} book. The title should:
- Be memorable and catchy
- Reflect the book's themes and content
- Work well for the {genre} genre
- Be between 1-5 words (though subtitles are acceptable if appropriate)

Return ONLY the title, nothing else. No explanations, no reasoning, no thought process.""",
        )
        title = clean_title(response, genre)
        print(f'Generated title: "{title}"', flush=True)
        return title

    def develop_outline(self, genre: str, concept: str) -> str:
        print("Developing detailed book outline...", flush=True)
        return self._ask(
            system=f"""You are a professional {genre} author and master of story structure.
Your task is to develop a detailed outline for a {genre} book based on the provided concept.
The book should be structured for approximately 300 pages with 10-15 chapters.""",
            user=f"""Based on this concept: "{concept}"

Please create a detailed outline for this {genre} book including:
1. A refined title if necessary
2. Main characters with brief descriptions (personality, motivations, arc)
3. Setting details
4. A chapter-by-chapter breakdown labelled "Chapter 1", "Chapter 2", ... with enough key events,
   scenes and turning points per chapter to support a standalone 5,000-7,500 word chapter draft
5. Major plot points and themes
6. Any special elements relevant to the {genre} (e.g. technology for sci-fi, monsters for horror)

Aim for 10-15 chapters total for a 300-page book.""",
        )

    def create_character_profiles(self, genre: str, outline: str) -> str:
        print("Creating detailed character profiles...", flush=True)
        return self._ask(
            system=f"""You are a professional {genre} author with expertise in character development.
Based on the book outline, create detailed character profiles for all major and supporting characters.""",
            user=f"""Using this book outline: "{outline[:config.PROFILES_OUTLINE_EXCERPT]}"

Create detailed character profiles for all major and supporting characters mentioned in the outline.
For each character include:
1. Full name
2. Age, physical appearance
3. Background/history
4. Personality traits, strengths and flaws
5. Motivations and goals
6. Character arc throughout the story
7. Relationships with other characters
8. Any special abilities or traits relevant to the {genre}

Organize this as a reference document that will help guide consistent character portrayal throughout the book.""",
        )

    def prepare_chapter(
        self,
        genre: str,
        chapter_number: int,
        outline: str,
        character_profiles: str,
        summaries: List[str],
        output_dir: Optional[Path] = None,
    ) -> ContextBundle:
        print(f"Preparing to write Chapter {chapter_number}...", flush=True)
        return self.budgeter.build(genre, chapter_number, outline, character_profiles, summaries, output_dir)

    def write_chapter(self, genre: str, chapter_number: int, context: str) -> str:
        print(f"Writing Chapter {chapter_number}...", flush=True)
        return self._ask(
            system=f"""You are a professional {genre} author. Your task is to write Chapter {chapter_number} of a book based on provided context.
Write in a compelling, engaging style appropriate for the {genre} genre. Aim for approximately 20-30 pages of content
(around 5,000-7,500 words). Include dialogue, description, action, and inner thoughts as appropriate.""",
            user=f"""Using this context information: "{context[:config.WRITE_CONTEXT_EXCERPT]}"

Write Chapter {chapter_number} in full. This should be publication-ready prose, not an outline.

- Maintain consistent characterization based on the profiles
- Follow the plot points for this chapter from the outline
- Ensure continuity with previous chapters if applicable
- Use a writing style appropriate for {genre} fiction
- Include chapter title/number at the beginning
- Write rich, immersive scenes with appropriate pacing
- End the chapter with an appropriate hook or resolution

Focus on quality prose that would engage readers of {genre} fiction.""",
        )

    def summarize_chapter(self, genre: str, chapter_number: int, chapter_text: str) -> str:
        print(f"Summarizing Chapter {chapter_number} for context...", flush=True)
        return self._ask(
            system=f"""You are a professional editor specializing in {genre} fiction.
Create a concise but comprehensive summary of the provided chapter.""",
            user=f"""Summarize the following chapter content from a {genre} book:

"{chapter_text[:config.SUMMARY_CHAPTER_EXCERPT]}"

Create a summary that captures all key events, character developments, plot advancements, and important details
that would be needed for maintaining continuity in subsequent chapters.

The summary should be approximately 500-800 words.""",
        )

    def enhance_chapter(
        self,
        genre: str,
        chapter_number: int,
        chapter_text: str,
        outline: str,
        summaries: List[str],
    ) -> str:
        print(f"Enhancing Chapter {chapter_number}...", flush=True)
        previous = "\n\n".join(summaries) if summaries else "(This is the first chapter.)"
        return self._ask(
            system=f"""You are a professional {genre} author and developmental editor.
Your task is to EXPAND an existing chapter, not rewrite it. Keep every plot event, scene order and
character decision exactly as written, and make the chapter richer and longer.""",
            user=f"""BOOK OUTLINE (excerpt):
{outline[:config.ENHANCE_OUTLINE_EXCERPT]}

PREVIOUS CHAPTER SUMMARIES:
{previous}

CHAPTER {chapter_number} (ORIGINAL TEXT):
{chapter_text}

Expand Chapter {chapter_number} so it is 150-200% of its current length:
- Add sensory detail to every scene (sight, sound, smell, texture)
- Deepen dialogue with subtext, reactions and natural back-and-forth
- Add internal monologue that shows the point-of-view character's thoughts and feelings
- Enrich world-building details appropriate to {genre} fiction
- Preserve the plot structure, the chapter heading and the ending

Return only the complete expanded chapter text.""",
        )


def write_chapters(
    writer: BookWriter,
    project: BookProject,
    store: BookStore,
    start: int,
    end: int,
) -> None:
    """Prepare, write and summarize chapters ``start..end`` in order.

    Chapters 1..start-1 must already be in ``project`` with their summaries.
    """
    total = end
    for number in range(start, end + 1):
        chapter_start = time.time()
        print(f"\n[{number}/{total}] Chapter {number}", flush=True)
        summaries = project.summaries[: number - 1]

        with stage("prepare", number):
            bundle = writer.prepare_chapter(
                project.genre,
                number,
                project.outline,
                project.character_profiles,
                summaries,
                output_dir=store.book_dir,
            )
        with stage("write", number):
            draft = writer.write_chapter(project.genre, number, bundle.text)
            store.save_chapter(number, draft)
            store.discard_backup(number)
        print(f"  Chapter saved to: {store.chapter_path(number)}", flush=True)

        with stage("summarize", number):
            summary = writer.summarize_chapter(project.genre, number, draft)
            store.save_summary(number, summary)
        print(f"  Chapter summary saved to: {store.summary_path(number)}", flush=True)

        project.put_chapter(Chapter(number=number, draft=draft, summary=summary))
        elapsed = time.time() - chapter_start
        print(f"Completed Chapter {number} of {total}  ({count_words(draft)} words, {elapsed:.1f}s)", flush=True)


def enhance_chapters(
    writer: BookWriter,
    project: BookProject,
    store: BookStore,
    start: int,
    end: int,
) -> List[int]:
    """Try to expand chapters ``start..end``; return the numbers that were accepted."""
    accepted = []
    for number in range(start, end + 1):
        chapter = project.chapter(number)
        original = chapter.text
        summaries = project.summaries[: number - 1]

        with stage("enhance", number):
            enhanced = writer.enhance_chapter(project.genre, number, original, project.outline, summaries)

        original_words = count_words(original)
        enhanced_words = count_words(enhanced)
        ratio = enhanced_words / original_words if original_words else 0.0
        if not is_enhancement_accepted(original, enhanced):
            print(
                f"  Enhancement of Chapter {number} rejected ({original_words} -> {enhanced_words} words, "
                f"x{ratio:.2f}); keeping the original.",
                flush=True,
            )
            continue

        with stage("enhance", number):
            # The backup always holds the first draft
            if not store.backup_path(number).exists():
                store.backup_chapter(number, chapter.draft)
            store.save_chapter(number, enhanced)
        chapter.enhanced = enhanced
        accepted.append(number)
        print(
            f"  Chapter {number} enhanced ({original_words} -> {enhanced_words} words, x{ratio:.2f}); "
            f"original backed up to {store.backup_path(number)}",
            flush=True,
        )
    return accepted


def compile_book(project: BookProject, store: BookStore) -> Path:
    print("Creating formatted PDF...", flush=True)
    with stage("compile"):
        data = build_book_pdf(project.title, project.genre, [c.text for c in project.chapters])
        path = store.save_pdf(project.title, data)
    print(f"PDF saved as {path}", flush=True)
    return path
