"""Utility to pull R source out of LLM responses."""

import re

# ```r, ```R, ```{r}, ```{r chunk-name}
_R_FENCE = re.compile(r"```[ \t]*(?:\{[rR][^}\n]*\}|[rR])[ \t]*\n(.*?)```", re.DOTALL)
_ANY_FENCE = re.compile(r"```[^\n`]*\n(.*?)```", re.DOTALL)
_INLINE_FENCE = re.compile(r"```(.*?)```", re.DOTALL)


def parse_code_block(text: str) -> str:
    """
    Extract R code from an LLM response.

    Handles:
    - ```r ... ``` and R Markdown ```{r} ... ``` chunks (all of them, joined)
    - ``` ... ``` blocks with any other or no language tag (first one)
    - Raw code if no fence found
    """
    text = text or ""

    chunks = [c.strip() for c in _R_FENCE.findall(text)]
    if chunks:
        return "\n\n".join(c for c in chunks if c)

    match = _ANY_FENCE.search(text) or _INLINE_FENCE.search(text)
    if match:
        return match.group(1).strip()

    return text.strip()
