#!/usr/bin/env python3
"""
Copyright 2025 7th software Ltd.

Licensed under the Apache License, Version 2.0 (the "License"); you may not use this file except in compliance with the
License. You may obtain a copy of the License at

    http://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software distributed under the License is distributed on an
"AS IS" BASIS, WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied. See the License for the specific
language governing permissions and limitations under the License.

Function detection and documentation blocks for JavaScript and TypeScript.

This module works on raw, possibly invalid source text, without a parser. It has three parts:

1. **Boundary location**: starting from a cursor line, scan upwards (at most 20 lines) for the nearest line that looks
   like a function declaration, then scan downwards counting `{` and `}` until the braces balance again. Braces inside
   strings, comments, regular expressions and template literals are counted like any other brace. That is a known
   limitation of the heuristic and is kept as-is. The scan ends on the first line where the count is back at zero
   once any `{` has been read, so a closing `}` line ends it. The VS Code extension this tool replaces only stopped on
   a balanced line that itself held a `{`, which let most multi-line functions run on to the 100-line cap.
2. **Signature extraction**: pull the function name, the bare parameter names and the return type annotation out of a
   text span with a handful of regular expressions. This never fails; `"unknown"` and `"void"` stand in for anything
   that can't be found.
3. **Documentation blocks**: render an XML-style `/** ... */` block for a summary and a signature, and patch it into
   the source lines above the declaration (optionally replacing a comment block that is already there).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, NamedTuple, Optional, Sequence, Tuple
import re


Chunk = List[str]

UNKNOWN_NAME = "unknown"
VOID_TYPE = "void"

LOOKBACK_LINES = 20         # How far above the cursor a declaration may be
MAX_FUNCTION_LINES = 100    # Forward scan gives up once this many lines past the declaration have been read


# ---- Patterns ---------------------------------------------------------------


# Variable style: `const add = (a, b) => {`, `export function add(a, b) {`, `let f = async (x): number => ...`
_DECL_VARIABLE = re.compile(
    r"^\s*(export\s+)?(const|function|let|var)\s+(\w+)\s*=?\s*(?:async\s*)?\([^)]*\)\s*(?::\s*\w+\s*)?(?:=>|{)",
    re.ASCII,
)

# Classic: `export async function add(a, b)`
_DECL_CLASSIC = re.compile(r"^\s*(export\s+)?(?:async\s+)?function\s+(\w+)\s*\([^)]*\)", re.ASCII)

DECLARATION_PATTERNS: Tuple[re.Pattern, ...] = (_DECL_VARIABLE, _DECL_CLASSIC)

_NAME = re.compile(r"(?:function|const|let|var)\s+(\w+)|(\w+)\s*(?:=\s*(?:async\s*)?\(|:\s*\()", re.ASCII)
_PARAMS = re.compile(r"\(([^)]*)\)")
_RETURN_TYPE = re.compile(r"\):\s*(\w+(?:<[^>]+>)?)", re.ASCII)
_INDENT = re.compile(r"^\s*")


# ---- Data model -------------------------------------------------------------


@dataclass(frozen=True)
class FunctionSignature:
    """
    What we know about one function, derived from its raw text.

    Attributes:
        name (str): The function's identifier, or "unknown".
        parameters (Tuple[str, ...]): Bare parameter names in declaration order (no types, no defaults).
        return_type (str): The return type annotation, or "void" when there isn't one.
        source_text (str): The exact text the signature was extracted from. This is what the LLM gets to read.
    """

    name: str
    parameters: Tuple[str, ...]
    return_type: str
    source_text: str


class LocatedFunction(NamedTuple):
    """A function found by `locate_function`: its 0-based declaration line and the text of the whole definition."""

    start_line: int
    text: str


# ---- Boundary location ------------------------------------------------------


def is_declaration_line(line: str) -> bool:
    """
    Return `True` if the line looks like the start of a function definition.

    The variable-style pattern is tried before the classic `function` pattern; either is enough.
    """

    return any(pattern.search(line) for pattern in DECLARATION_PATTERNS)


def find_declaration_line(source_lines: Sequence[str], cursor_line: int) -> Optional[int]:
    """
    Scan upwards from the cursor for the nearest function declaration.

    The cursor line itself and up to `LOOKBACK_LINES` lines above it are tested, nearest first. This finds the closest
    declaration-like line, not the outermost enclosing function.

    Parameters:
    - `source_lines`: The document, one string per line.
    - `cursor_line`: 0-based cursor line.

    Returns:
    - The 0-based declaration line, or `None` if nothing in the window matched.
    """

    for i in range(cursor_line, max(0, cursor_line - LOOKBACK_LINES) - 1, -1):
        if is_declaration_line(source_lines[i]):
            return i
    return None


def find_function_text(source_lines: Sequence[str], start_line: int) -> Tuple[int, str]:
    """
    Collect the text of a function starting at its declaration line.

    Lines are accumulated until the running brace count returns to zero, once at least one `{` has been read (so a
    declaration line without a brace doesn't end the scan on its own). Braces are counted blindly, whatever they are
    part of. The scan also stops after `MAX_FUNCTION_LINES` lines past the declaration, or at
    the end of the document, if the braces never balance.

    Parameters:
    - `source_lines`: The document, one string per line.
    - `start_line`: 0-based declaration line.

    Returns:
    - A tuple of the 0-based last line read and the accumulated text (every line terminated by "\\n").
    """

    brace_count = 0
    opened = False
    end_line = start_line
    parts: Chunk = []

    for i in range(start_line, len(source_lines)):
        line = source_lines[i]
        parts.append(line + "\n")
        end_line = i

        brace_count += line.count("{") - line.count("}")
        opened = opened or "{" in line
        if brace_count == 0 and opened:
            break

        if i - start_line > MAX_FUNCTION_LINES:
            break

    return end_line, "".join(parts)


def locate_function(source_lines: Sequence[str], cursor_line: int) -> Optional[LocatedFunction]:
    """
    Find the function definition at (or just above) the cursor.

    Parameters:
    - `source_lines`: The document, one string per line.
    - `cursor_line`: 0-based cursor line. Must be a valid index into `source_lines`.

    Returns:
    - A `LocatedFunction`, or `None` when no declaration lies within the lookback window.
    """

    start_line = find_declaration_line(source_lines, cursor_line)
    if start_line is None:
        return None

    _, text = find_function_text(source_lines, start_line)
    return LocatedFunction(start_line, text)


# ---- Signature extraction ---------------------------------------------------


def _parameter_name(piece: str) -> str:
    return piece.split(":")[0].split("=")[0].strip()


def parse_function_from_text(text: str) -> FunctionSignature:
    """
    Extract a best-effort signature from the text of a function.

    - The name is the identifier after `function`/`const`/`let`/`var`, or else an identifier directly followed by
      `= (`, `= async (` or `: (`.
    - The parameters come from the first `( ... )` group. Nesting is not understood, so a default value or a type
      containing parentheses cuts the list short.
    - The return type is whatever follows the first `):`, with at most one level of `<...>` generic arguments.

    Parameters:
    - `text`: Any text; it doesn't have to be a valid function.

    Returns:
    - The extracted `FunctionSignature`.
    """

    name_match = _NAME.search(text)
    name = (name_match.group(1) or name_match.group(2)) if name_match else UNKNOWN_NAME

    params_match = _PARAMS.search(text)
    params_str = params_match.group(1) if params_match else ""
    pieces = [p.strip() for p in params_str.split(",")]
    parameters = tuple(_parameter_name(p) for p in pieces if p)

    return_match = _RETURN_TYPE.search(text)
    return_type = return_match.group(1) if return_match else VOID_TYPE

    return FunctionSignature(name=name, parameters=parameters, return_type=return_type, source_text=text)


# ---- Documentation blocks ---------------------------------------------------


def leading_whitespace(line: str) -> str:
    """Return the indentation of `line`, exactly as written."""

    return _INDENT.match(line).group(0)


def render_doc_block(summary: str, signature: FunctionSignature, indent: str = "") -> Chunk:
    """
    Render an XML documentation block for a function.

    The block holds a `<summary>` section, one `<param>` tag per parameter (empty names and bare `...` are skipped) and
    a `<returns>` tag when the function has a return type other than "void".

    Parameters:
    - `summary`: The summary text; each of its lines gets its own ` * ` line.
    - `signature`: The function's signature.
    - `indent`: Prefix for every line of the block, normally the declaration line's indentation.

    Returns:
    - The block, one string per line, without line terminators.
    """

    out = [f"{indent}/**", f"{indent} * <summary>"]
    for ln in summary.splitlines() or [""]:
        out.append(f"{indent} * {ln.rstrip()}")
    out.append(f"{indent} * </summary>")

    for param in signature.parameters:
        if param and param != "...":
            out.append(f'{indent} * <param name="{param}"></param>')

    if signature.return_type != VOID_TYPE:
        out.append(f"{indent} * <returns></returns>")

    out.append(f"{indent} */")
    return out


def scan_existing_comment_block_above(source_lines: Sequence[str], line: int) -> Optional[Tuple[int, int]]:
    """
    Detect a comment block immediately above a (0-based) line.

    Two shapes are recognised:
    - a block comment whose last line ends in `*/` right above `line`, where every line of the block holds only
      comment text (the opening `/*` line, then ` *` continuation lines),
    - a contiguous run of `//` lines right above `line`.

    A code line with a trailing comment, such as `const x = y; /* note */`, is not a comment block.

    Returns:
    - A tuple of the 0-based first and last lines of the comment (inclusive), or `None`.
    """

    i = line - 1
    if i < 0:
        return None

    last = source_lines[i].strip()
    if last.endswith("*/"):
        if not last.startswith("*") and not last.startswith("/*"):
            return None
        j = i
        while j >= 0:
            stripped = source_lines[j].lstrip()
            if stripped.startswith("/*"):
                return j, i
            if not stripped.startswith("*"):
                return None
            j -= 1
        return None

    j = i
    while j >= 0 and source_lines[j].lstrip().startswith("//"):
        j -= 1
    if j < i:
        return j + 1, i

    return None


def patch_doc_block(source_lines: Sequence[str], line: int, block: Sequence[str], replace: bool = False) -> Tuple[Chunk, int]:
    """
    Place a documentation block above the declaration at `line` (0-based).

    By default the block is inserted at the start of `line`, pushing the declaration down. With `replace`, a comment
    block already sitting directly above the declaration is replaced instead.

    Returns:
    - The patched copy of the lines, and the 0-based line the block now starts at.
    """

    out_lines = list(source_lines)

    existing = scan_existing_comment_block_above(out_lines, line) if replace else None
    if existing:
        first, last = existing
        out_lines[first:last + 1] = list(block)
        return out_lines, first

    out_lines[line:line] = list(block)
    return out_lines, line
