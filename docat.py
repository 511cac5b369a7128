#!/usr/bin/env python3
"""
Copyright 2025 7th software Ltd.

Licensed under the Apache License, Version 2.0 (the "License"); you may not use this file except in compliance with the
License. You may obtain a copy of the License at

    http://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software distributed under the License is distributed on an
"AS IS" BASIS, WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied. See the License for the specific
language governing permissions and limitations under the License.

This program is DOCAT (Documentation At Cursor), which uses a Large Language Model (LLM) to write a documentation comment
for one JavaScript or TypeScript function.

Given a source file and a cursor line (or a range of selected lines), it finds the function definition around the
cursor, asks the LLM for a short summary of what the function does, and inserts an XML documentation block with
`<summary>`, `<param>` and `<returns>` tags directly above the function. The updated source is written to a file, back
to the source file, or to stdout.

The LLM is either an OpenAI model (the default, "gpt-4", which needs an API key kept in the global DOCAT configuration)
or a local GGUF model run through llama.cpp.
"""

from __future__ import annotations

from dataclasses import dataclass
from docat_config import DocConfig
from docat_errors import DocatError, InvocationInProgress, MissingCredential, NoActiveContext, NoFunctionDetected
from docat_javascript import FunctionSignature, leading_whitespace, locate_function, parse_function_from_text
from docat_javascript import patch_doc_block, render_doc_block, Chunk
from docat_llm import GenerationConfig, LocalChatModel, generate_summary, is_local_model, make_chat_model
from docat_log import echo, error, notify, progress, set_verbosity
from pathlib import Path
from typing import Optional, Sequence, Tuple
import argparse
import contextlib
import getpass
import json
import os
import sys


# ---------------------------- Document ----------------------------


class Document:
    """
    A source file held as a list of lines.

    The file's dominant line ending is remembered so that the document can be written back the way it was read.
    Line numbers are 0-based.
    """

    def __init__(self, path: Path, lines: Chunk, line_ending: str = "\n") -> None:
        self.path = path
        self.lines = lines
        self.line_ending = line_ending

    @classmethod
    def load(cls, src_path: Path) -> "Document":
        """
        Load a source file.

        Raises:
        - `NoActiveContext`: The file doesn't exist or can't be read.
        """

        echo(f"Loading source file '{str(src_path)}'...")
        if not src_path.is_file():
            raise NoActiveContext(f"No active editor found: file not found: {src_path}")

        try:
            raw = src_path.read_bytes()
        except OSError as exc:
            raise NoActiveContext(f"No active editor found: {exc}") from exc
        source_blob = raw.decode("utf-8", errors="surrogateescape")

        # Count newline styles
        count_rn = source_blob.count("\r\n")
        count_r = source_blob.count("\r") - count_rn  # bare \r not part of \r\n
        count_n = source_blob.count("\n") - count_rn  # bare \n not part of \r\n

        # Find the most common one
        if count_rn > max(count_r, count_n):
            line_ending = "\r\n"
        else:
            line_ending = "\r" if count_r > count_n else "\n"

        return cls(src_path, source_blob.split(line_ending), line_ending)

    @property
    def line_count(self) -> int:
        return len(self.lines)

    def line_at(self, n: int) -> str:
        return self.lines[n]

    def text_for_lines(self, a: int, b: int) -> str:
        """Return lines `a` to `b` (inclusive) joined with "\\n"."""

        return "\n".join(self.lines[a:b + 1])

    def render(self) -> bytes:
        return self.line_ending.join(self.lines).encode("utf-8", errors="surrogateescape")

    def save(self, dst_path: Path) -> None:
        dst_path.write_bytes(self.render())


@dataclass(frozen=True)
class Selection:
    """An explicit range of selected lines, 0-based and inclusive."""

    start_line: int
    end_line: int


def parse_selection(text: str) -> Selection:
    """
    Parse a 1-based, inclusive "START:END" line range (e.g. "12:30") into a 0-based `Selection`.
    """

    try:
        start_s, end_s = text.split(":", 1)
        start, end = int(start_s), int(end_s)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid selection '{text}', expected START:END") from None
    if start < 1 or end < start:
        raise argparse.ArgumentTypeError(f"invalid selection '{text}', expected 1 <= START <= END")
    return Selection(start - 1, end - 1)


# ---------------------------- Invocation lock ----------------------------


def _is_pid_alive(pid: int) -> bool:
    """Check if a process is still running."""
    try:
        os.kill(pid, 0)
        return True
    except ProcessLookupError:
        return False
    except PermissionError:
        return True  # process exists but we lack permission to signal it
    except OSError:
        return False


class InvocationLock:
    """
    Reject overlapping DOCAT runs on the same file.

    The lock is a `.<name>.docat.lock` file beside the file being written, holding the owner's PID. A lock left behind
    by a process that no longer exists, or that can't be read, is taken over. Runs that only print to stdout take no
    lock.
    """

    def __init__(self, path: Path) -> None:
        self.lock_file = path.with_name(f".{path.name}.docat.lock")

    def __enter__(self) -> "InvocationLock":
        payload = json.dumps({"pid": os.getpid()}).encode("utf-8")
        try:
            fd = os.open(self.lock_file, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            other_pid = self._owner()
            if other_pid and other_pid != os.getpid() and _is_pid_alive(other_pid):
                raise InvocationInProgress(
                    f"Another DOCAT run (PID {other_pid}) is already documenting this file"
                ) from None
            echo(f"Taking over stale lock {self.lock_file}")
            self.lock_file.write_bytes(payload)
            return self

        with os.fdopen(fd, "wb") as f:
            f.write(payload)
        return self

    def __exit__(self, *exc_info) -> None:
        if self._owner() == os.getpid():
            self.lock_file.unlink(missing_ok=True)

    def _owner(self) -> Optional[int]:
        try:
            data = json.loads(self.lock_file.read_text())
            return int(data.get("pid", 0))
        except (OSError, ValueError, AttributeError, TypeError):
            return None


# ---------------------------- Generation flow ----------------------------


def ensure_api_key(config: DocConfig) -> str:
    """
    Return the configured OpenAI API key, asking for one (masked) if none is configured.

    A key typed in is saved to the global configuration for next time.

    Raises:
    - `MissingCredential`: The user entered nothing or cancelled the prompt.
    """

    api_key = config.api_key
    if api_key:
        return api_key

    try:
        entered = getpass.getpass("Enter your OpenAI API Key: ")
    except (EOFError, KeyboardInterrupt):
        entered = ""

    entered = entered.strip()
    if not entered:
        raise MissingCredential()

    config.api_key = entered
    echo(f"API key saved to {config.path}")
    return entered


def resolve_function(document: Document, cursor_line: int, selection: Optional[Selection] = None) -> Tuple[FunctionSignature, int]:
    """
    Work out which function to document and where its comment goes.

    With a selection, the selected text is the function and the comment goes above the selection's first line.
    Otherwise the function is located from the cursor line.

    Returns:
    - The function's signature and the 0-based line to insert the comment at.

    Raises:
    - `NoActiveContext`: The cursor or selection lies outside the document.
    - `NoFunctionDetected`: There is no function declaration near the cursor.
    """

    if selection is not None:
        if selection.end_line >= document.line_count:
            raise NoActiveContext(
                f"Selection ends at line {selection.end_line + 1} but the document has {document.line_count} lines"
            )
        text = document.text_for_lines(selection.start_line, selection.end_line)
        return parse_function_from_text(text), selection.start_line

    if not 0 <= cursor_line < document.line_count:
        raise NoActiveContext(f"Line {cursor_line + 1} is outside the document ({document.line_count} lines)")

    located = locate_function(document.lines, cursor_line)
    if located is None:
        raise NoFunctionDetected()

    echo(f"Found function at line {located.start_line + 1}")
    return parse_function_from_text(located.text), located.start_line


def insert_documentation(document: Document, line: int, summary: str, signature: FunctionSignature, replace: bool = False) -> int:
    """
    Insert the documentation block for `signature` above `line`, indented like that line.

    Returns:
    - The 0-based line the block starts at.
    """

    indent = leading_whitespace(document.line_at(line))
    block = render_doc_block(summary, signature, indent)
    document.lines, at = patch_doc_block(document.lines, line, block, replace=replace)
    return at


def generate_documentation(
    llm,
    document: Document,
    cursor_line: int,
    selection: Optional[Selection] = None,
    cfg: Optional[GenerationConfig] = None,
    replace: bool = False,
) -> int:
    """
    Document the function at the cursor (or the selected function) in place.

    Returns:
    - The 0-based line the documentation block was inserted at.

    Raises:
    - `NoFunctionDetected`, `NoActiveContext`: Nothing to document; the document is left untouched.
    - `CompletionServiceFailure`: The summary request failed; the document is left untouched.
    """

    signature, insert_line = resolve_function(document, cursor_line, selection)
    echo(f"Function '{signature.name}' ({', '.join(signature.parameters)}) -> {signature.return_type}")

    with progress("Generating documentation..."):
        summary = generate_summary(llm, signature, cfg)
        at = insert_documentation(document, insert_line, summary, signature, replace=replace)

    return at


# ---------------------------- CLI harness ----------------------------


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Parameters:
    - argv: Optional list of strings to parse. If not provided, sys.argv[1:] is used.

    Returns:
    - An argparse.Namespace object containing the parsed arguments.
    """

    p = argparse.ArgumentParser(description="DOCAT: generate documentation for the function at the cursor or selection")
    p.add_argument("source", nargs="?", default=None, help="Path to JavaScript / TypeScript source file")
    p.add_argument("--line", "-n", type=int, default=1, help="Cursor line (1-based)")
    p.add_argument("--selection", "-s", type=parse_selection, default=None, help="Selected lines START:END (1-based, inclusive)")
    p.add_argument("--model", "-m", default="", help="Model name, or path to a GGUF model file (default: from configuration)")
    p.add_argument("--output", "-o", default="", help="Optional output filename")
    p.add_argument("--in-place", "-i", action="store_true", help="Write the updated source back to the source file")
    p.add_argument("--replace", "-r", action="store_true", help="Replace a comment block already above the function")
    p.add_argument("--verbose", "-v", action="store_true", help="Output progress information to stdout")
    p.add_argument("--very-verbose", "-vv", action="store_true", help="Output LLM debug information to stdout")
    p.add_argument("--download-model", default="", metavar="REPO_ID", help="Download a GGUF model from the Hugging Face Hub and exit")
    p.add_argument("--include", default="*.gguf", help="File pattern to download with --download-model")
    p.add_argument("--models-path", default="./models", help="Where --download-model puts models")

    return p.parse_args(argv)


def _write_output(document: Document, dst_path: Optional[Path]) -> None:
    if dst_path:
        document.save(dst_path)
        echo(f"Updated source written to {dst_path}")
    else:
        sys.stdout.buffer.write(document.render())
        sys.stdout.buffer.flush()


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    Main entry point. Runs the "generate documentation for the function at cursor or selection" command.

    Returns:
    - 0 on success, 1 if the command failed (the reason has been reported on stderr).
    """

    args = _parse_args(argv)

    set_verbosity(args.verbose or args.very_verbose)

    if args.download_model:
        path = LocalChatModel.download_model(args.download_model, args.include, args.models_path)
        print(path)
        return 0

    try:
        if not args.source:
            raise NoActiveContext("No active editor found")
        src_path = Path(args.source)
        document = Document.load(src_path)

        config = DocConfig()
        model = args.model or config.model
        api_key = None if is_local_model(model) else ensure_api_key(config)
    except DocatError as exc:
        error(str(exc))
        return 1

    if args.output:
        dst_path: Optional[Path] = Path(args.output)
    else:
        dst_path = src_path if args.in_place else None

    try:
        # Guards the file being written; a stdout run takes no lock.
        lock = InvocationLock(dst_path) if dst_path else contextlib.nullcontext()
        with lock:
            llm = make_chat_model(model, api_key, verbose=args.very_verbose)
            generate_documentation(llm, document, args.line - 1, args.selection, replace=args.replace)
            _write_output(document, dst_path)
    except (NoActiveContext, NoFunctionDetected, InvocationInProgress) as exc:
        error(str(exc))
        return 1
    except Exception as exc:
        error(f"Error: {exc}")
        return 1

    notify("Documentation generated successfully!")
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
