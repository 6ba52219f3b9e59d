#!/usr/bin/env python3
"""
Generate a full-length book from a genre (and optional topic).

A fresh run goes concept -> title -> outline -> character profiles -> chapters
(each prepared from the summaries of the chapters before it, written, then
summarized) -> optional enhancement pass -> PDF. Everything is saved under
output/<title_slug>/, so an interrupted or finished book can be picked up
again with --pdf, --enhance or --generate-chapters.

Usage:
    ./generate_book.py scifi
    ./generate_book.py scifi "colonization of Mars"
    ./generate_book.py fantasy "a thieves' guild" 12 --no-enhance
    ./generate_book.py --pdf "The Last Ember"
    ./generate_book.py --enhance "The Last Ember" 3 5
    ./generate_book.py --generate-chapters "The Last Ember" 4
"""

import argparse
import sys
import time
from typing import List, Optional

import book_config as config
from book_continuation import RangeError, compile_only, enhance_only, generate_chapters_only
from book_project import BookNotFoundError, BookProject, BookStore, PersistenceWarning, ScratchSpace
from book_stages import (
    BookWriter,
    StageError,
    compile_book,
    enhance_chapters,
    extract_chapter_count,
    stage,
    write_chapters,
)
from generation_client import GenerationClient, create_backend
from response_sanitizer import timestamp_token


def build_writer() -> BookWriter:
    return BookWriter(GenerationClient(create_backend()))


def run_fresh(
    writer: BookWriter,
    genre: str,
    topic: Optional[str] = None,
    chapter_count: Optional[int] = None,
    enhance: bool = True,
    root: str = config.OUTPUT_DIR,
) -> BookProject:
    """Run every stage for a new book and return it."""
    project = BookProject(genre=genre, enhance=enhance, requested_chapter_count=chapter_count)
    scratch = ScratchSpace(root, timestamp_token())
    try:
        _run_stages(writer, project, scratch, topic, root)
    except StageError as e:
        e.title = project.title or None
        raise
    finally:
        try:
            scratch.remove()
        except PersistenceWarning as e:
            print(f"Warning: {e}", flush=True)
    return project


def _run_stages(
    writer: BookWriter,
    project: BookProject,
    scratch: ScratchSpace,
    topic: Optional[str],
    root: str,
) -> None:
    genre = project.genre

    print("\n[1/7] Book concept", flush=True)
    if topic:
        project.concept = topic
    else:
        with stage("concept"):
            project.concept = writer.generate_concept(genre)
        try:
            scratch.save("book_concept.txt", project.concept)
        except PersistenceWarning as e:
            print(f"Warning: {e}", flush=True)
    print(f"\nBook Concept: {project.concept}\n", flush=True)

    print("[2/7] Title", flush=True)
    with stage("title"):
        project.title = writer.generate_title(genre, project.concept)

    store = BookStore.for_title(project.title, root)
    store.initialize()
    store.save_concept(project.concept)
    store.save_genre(genre)
    store.save_title(project.title)
    print(f"All book files will be saved to: {store.book_dir}", flush=True)

    print("\n[3/7] Outline", flush=True)
    with stage("outline"):
        project.outline = writer.develop_outline(genre, project.concept)
    store.save_outline(project.outline)
    print("\nBook Outline Complete\n", flush=True)

    chapter_count = extract_chapter_count(project.outline, project.requested_chapter_count)
    project.requested_chapter_count = chapter_count
    store.save_chapter_count(chapter_count)
    print(f"Book title: {project.title}")
    print(f"Writing {chapter_count} chapters\n", flush=True)

    print("[4/7] Character profiles", flush=True)
    with stage("character profiles"):
        project.character_profiles = writer.create_character_profiles(genre, project.outline)
    store.save_character_profiles(project.character_profiles)
    print("\nCharacter Profiles Complete\n", flush=True)

    print("[5/7] Chapters", flush=True)
    write_chapters(writer, project, store, 1, chapter_count)

    if project.enhance:
        print("\n[6/7] Enhancing chapters", flush=True)
        accepted = enhance_chapters(writer, project, store, 1, chapter_count)
        print(f"Enhanced {len(accepted)} of {chapter_count} chapter(s).", flush=True)
    else:
        print("\n[6/7] Skipping chapter enhancement as requested...", flush=True)

    print("\n[7/7] PDF", flush=True)
    compile_book(project, store)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate a full-length book from a genre and optional topic",
        epilog=(
            'Examples:\n  %(prog)s scifi "colonization of Mars"\n'
            '  %(prog)s --enhance "The Last Ember" 3 5'
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("genre", nargs="?", help="Genre of the book (required for a fresh run)")
    parser.add_argument("topic", nargs="?", help="Topic or concept; generated when omitted")
    parser.add_argument("chapter_count", nargs="?", type=int, help="Number of chapters (default: from the outline)")
    parser.add_argument("--no-enhance", action="store_true", help="Skip the chapter enhancement pass")
    parser.add_argument(
        "--output-dir",
        default=config.OUTPUT_DIR,
        help=f"Root directory for generated books (default: {config.OUTPUT_DIR})",
    )

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--pdf", metavar="TITLE", help="Rebuild the PDF of an existing book")
    mode.add_argument(
        "--enhance",
        nargs="+",
        metavar="TITLE [START [END]]",
        help="Enhance chapters START..END of an existing book (default: all)",
    )
    mode.add_argument(
        "--generate-chapters",
        nargs="+",
        metavar="TITLE [START [END]]",
        help="(Re)generate chapters START..END of an existing book (default: all)",
    )
    return parser


def _usage_error(parser: argparse.ArgumentParser, message: str) -> None:
    parser.print_usage(sys.stderr)
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(1)


def _title_and_range(parser: argparse.ArgumentParser, flag: str, values: List[str]):
    title = values[0].strip()
    if not title:
        _usage_error(parser, f"{flag} requires a book title")
    bounds = values[1:]
    if len(bounds) > 2:
        _usage_error(parser, f"{flag} takes a title and at most two chapter numbers")
    try:
        numbers = [int(value) for value in bounds]
    except ValueError:
        _usage_error(parser, f"{flag} chapter numbers must be integers, got {' '.join(bounds)}")
    start = numbers[0] if numbers else None
    end = numbers[1] if len(numbers) > 1 else None
    return title, start, end


def main(argv: Optional[List[str]] = None, writer: Optional[BookWriter] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    root = args.output_dir
    start_time = time.time()
    book_title: Optional[str] = None

    try:
        if args.pdf is not None:
            if not args.pdf.strip():
                _usage_error(parser, "--pdf requires a book title")
            compile_only(args.pdf.strip(), root)

        elif args.enhance:
            title, start, end = _title_and_range(parser, "--enhance", args.enhance)
            book_title = title
            enhance_only(writer or build_writer(), title, start, end, root)

        elif args.generate_chapters:
            title, start, end = _title_and_range(parser, "--generate-chapters", args.generate_chapters)
            book_title = title
            generate_chapters_only(writer or build_writer(), title, start, end, root)

        else:
            if not args.genre or not args.genre.strip():
                _usage_error(parser, "Genre is required")
            if args.chapter_count is not None and args.chapter_count < 1:
                _usage_error(parser, "chapter_count must be a positive integer")

            genre = args.genre.strip()
            print(
                f"Starting book generation process for {genre} genre"
                f"{f' with topic: {args.topic}' if args.topic else ''}",
                flush=True,
            )
            project = run_fresh(
                writer or build_writer(),
                genre,
                topic=args.topic,
                chapter_count=args.chapter_count,
                enhance=not args.no_enhance,
                root=root,
            )
            store = BookStore.for_title(project.title, root)
            print("\nBook generation complete!")
            print(f"Book saved as: {store.pdf_path(project.title)}")
            print(f"Individual chapters and other materials are available in the {store.book_dir} directory")

    except BookNotFoundError as e:
        _usage_error(parser, str(e))
    except RangeError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except StageError as e:
        print(f"\nError during {e.stage}" + (f" of chapter {e.chapter}" if e.chapter else "") + f": {e.cause}", file=sys.stderr)
        title = e.title or book_title
        if e.chapter and title:
            flag = "--enhance" if e.stage == "enhance" else "--generate-chapters"
            print(f'Resume with: ./generate_book.py {flag} "{title}" {e.chapter}', file=sys.stderr)
        sys.exit(1)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    minutes, seconds = divmod(int(time.time() - start_time), 60)
    print(f"\nFinished in {minutes} minutes and {seconds} seconds", flush=True)


if __name__ == "__main__":
    main()
