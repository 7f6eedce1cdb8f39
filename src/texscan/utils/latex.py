"""
LaTeX normalization module for document reconstruction.

Provides:
- Ordered rewrite rules for math delimiters and geometry notation
- Idempotent normalization of transcribed Markdown text

Rules (applied in this order):
1. \\( ... \\)   -> $ ... $
2. \\[ ... \\]   -> $$ ... $$
3. \\angle ABC   -> \\widehat{ABC}
4. \\angle A     -> \\hat{A}
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, Pattern, Tuple, Union

logger = logging.getLogger(__name__)


# ============================================================================
# Rewrite Rules
# ============================================================================

@dataclass(frozen=True)
class RewriteRule:
    """A single named regex rewrite."""
    name: str
    pattern: Pattern
    replacement: Union[str, Callable[["re.Match"], str]]

    def apply(self, text: str) -> str:
        replacement = self.replacement
        if isinstance(replacement, str):
            # Literal text; LaTeX backslashes are not template escapes
            literal = replacement
            replacement = lambda m: literal
        return self.pattern.sub(replacement, text)


INLINE_MATH_RULE = RewriteRule(
    name="inline_math",
    pattern=re.compile(r"\\\((.*?)\\\)", re.DOTALL),
    replacement=lambda m: f"${m.group(1)}$",
)

DISPLAY_MATH_RULE = RewriteRule(
    name="display_math",
    pattern=re.compile(r"\\\[(.*?)\\\]", re.DOTALL),
    replacement=lambda m: f"$${m.group(1)}$$",
)

# \angle ABC or \angle {ABC}
THREE_LETTER_ANGLE_RULE = RewriteRule(
    name="three_letter_angle",
    pattern=re.compile(r"\\angle\s*\{?([A-Z]{3})\}?"),
    replacement=lambda m: "\\widehat{" + m.group(1) + "}",
)

# \angle A, but not the first letter of \angle AB
SINGLE_LETTER_ANGLE_RULE = RewriteRule(
    name="single_letter_angle",
    pattern=re.compile(r"\\angle\s*\{?([A-Z])\}?(?![A-Z])"),
    replacement=lambda m: "\\hat{" + m.group(1) + "}",
)

DEFAULT_RULES: Tuple[RewriteRule, ...] = (
    INLINE_MATH_RULE,
    DISPLAY_MATH_RULE,
    THREE_LETTER_ANGLE_RULE,
    SINGLE_LETTER_ANGLE_RULE,
)


# ============================================================================
# Normalization
# ============================================================================

def apply_rules(text: str, rules: Tuple[RewriteRule, ...] = DEFAULT_RULES) -> str:
    """Run every rule once, in order."""
    for rule in rules:
        text = rule.apply(text)
    return text


def normalize_latex(
    text: str,
    rules: Tuple[RewriteRule, ...] = DEFAULT_RULES
) -> str:
    """
    Normalize math delimiters and angle notation in transcribed text.

    The rule chain is re-applied until the text stops changing, so nested or
    unbalanced delimiters cannot leave work for a second call:
    normalize_latex(normalize_latex(s)) == normalize_latex(s).

    Args:
        text: Markdown/LaTeX text as produced by the OCR backend
        rules: Ordered rewrite rules

    Returns:
        Normalized text
    """
    if not text:
        return text

    passes = 0
    while True:
        rewritten = apply_rules(text, rules)
        if rewritten == text:
            break
        text = rewritten
        passes += 1

    if passes > 1:
        logger.debug(f"LaTeX normalization converged after {passes} passes")

    return text
