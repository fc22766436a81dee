"""
Text helpers shared by the tools, the dispatcher and compaction.

Lengths are measured in characters.
"""


def truncate(s: str, max_chars: int) -> str:
    """Cut ``s`` to ``max_chars`` and note the original size."""
    if len(s) <= max_chars:
        return s
    return f"{s[:max_chars]}...\n(truncated, {len(s)} chars total)"


def truncate_head(s: str, max_lines: int, max_chars: int) -> tuple[str, bool]:
    """Keep the first ``max_lines`` lines and ``max_chars`` characters."""
    lines = s.splitlines(keepends=True)
    if len(s) <= max_chars and len(lines) <= max_lines:
        return s, False

    end = 0
    for count, line in enumerate(lines):
        if count >= max_lines or end + len(line) > max_chars:
            break
        end += len(line)

    out = s[:end]
    if out and not out.endswith("\n"):
        out += "\n"
    out += f"... ({len(lines)} lines, {len(s)} chars total)"
    return out, True


def truncate_tail(s: str, max_lines: int, max_chars: int) -> tuple[str, bool]:
    """Keep the last ``max_lines`` lines and ``max_chars`` characters."""
    lines = s.splitlines(keepends=True)
    if len(s) <= max_chars and len(lines) <= max_lines:
        return s, False

    keep = min(len(lines), max_lines)
    line_start = sum(len(line) for line in lines[: len(lines) - keep])
    start = max(line_start, len(s) - max_chars, 0)

    header = f"... ({len(lines)} lines, {len(s)} chars total)\n"
    return header + s[start:], True


def truncate_line(s: str, max_chars: int) -> str:
    if len(s) <= max_chars:
        return s
    return s[:max_chars] + "..."


_CHAR_MAP = str.maketrans({
    "‘": "'",
    "’": "'",
    "“": '"',
    "”": '"',
    "–": "-",
    "—": "-",
})


def normalize_with_offsets(s: str) -> tuple[str, list[int]]:
    """Normalize ``s`` and return, for every normalized character, its index in ``s``."""
    out: list[str] = []
    offsets: list[int] = []
    prev_ws = False
    for i, ch in enumerate(s.translate(_CHAR_MAP)):
        if ch.isspace():
            if not prev_ws and out:
                out.append(" ")
                offsets.append(i)
            prev_ws = True
        else:
            out.append(ch)
            offsets.append(i)
            prev_ws = False
    if out and out[-1] == " ":
        out.pop()
        offsets.pop()
    return "".join(out), offsets


def normalize_for_match(s: str) -> str:
    """Normalize text for fuzzy matching.

    Smart quotes become ASCII quotes, en/em dashes become hyphens and every
    whitespace run collapses to one space. Leading and trailing whitespace
    is dropped.
    """
    return normalize_with_offsets(s)[0]


def fuzzy_find(content: str, needle: str) -> tuple[int, int] | None:
    """Locate ``needle`` in ``content`` ignoring quote, dash and whitespace differences.

    Returns the ``(start, end)`` slice of ``content`` only when the
    normalized needle occurs exactly once.
    """
    norm_content, offsets = normalize_with_offsets(content)
    norm_needle = normalize_for_match(needle)
    if not norm_needle or norm_content.count(norm_needle) != 1:
        return None
    pos = norm_content.find(norm_needle)
    return offsets[pos], offsets[pos + len(norm_needle) - 1] + 1


def edit_diff(path: str, full_old: str, old_text: str, new_text: str, context: int = 3) -> str:
    """Render a unified-style diff for a single replaced region."""
    pos = full_old.find(old_text)
    if pos < 0:
        return ""

    old_lines = full_old.splitlines()
    prefix = full_old[:pos]
    if pos == 0:
        start = 0
    elif prefix.endswith("\n"):
        start = len(prefix.splitlines())
    else:
        start = max(len(prefix.splitlines()) - 1, 0)
    end = min(start + max(len(old_text.splitlines()), 1), len(old_lines))
    new_lines = new_text.splitlines()

    ctx_start = max(start - context, 0)
    ctx_end = min(end + context, len(old_lines))

    out = [
        f"--- {path}",
        f"+++ {path}",
        "@@ -{},{} +{},{} @@".format(
            ctx_start + 1,
            ctx_end - ctx_start,
            ctx_start + 1,
            (start - ctx_start) + len(new_lines) + (ctx_end - end),
        ),
    ]
    out.extend(f" {line}" for line in old_lines[ctx_start:start])
    out.extend(f"-{line}" for line in old_lines[start:end])
    out.extend(f"+{line}" for line in new_lines)
    out.extend(f" {line}" for line in old_lines[end:ctx_end])
    return "\n".join(out) + "\n"
