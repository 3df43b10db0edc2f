"""
Content signals: descriptive terms mined from product copy.

Pulls tokens from description HTML (image alt text, image filenames and the
stripped body text), the plain description and the basic product fields.
"""

import re
from typing import Iterable, List, Optional

from core.utils import normalize_key, unique_first


MAX_HTML_CHARS = 12000
MAX_TEXT_CHARS = 6000
MAX_SIGNAL_TERMS = 28

STOPWORDS = frozenset({
    "and", "for", "with", "the", "this", "that", "from",
    "your", "our", "you", "are", "was", "were",
    "women", "woman", "female", "men", "man", "male", "unisex",
    "product", "products",
})

_TOKEN_SPLIT = re.compile(r"[^a-z0-9]+")
_SCRIPT_BLOCK = re.compile(r"<script[\s\S]*?</script>", re.IGNORECASE)
_STYLE_BLOCK = re.compile(r"<style[\s\S]*?</style>", re.IGNORECASE)
_ANY_TAG = re.compile(r"<[^>]+>")
_WHITESPACE = re.compile(r"\s+")
_FILE_EXTENSION = re.compile(r"\.[a-z0-9]{2,5}$", re.IGNORECASE)


def _img_attribute_pattern(attribute: str) -> "re.Pattern[str]":
    return re.compile(
        rf"""<img\b[^>]*\b{attribute}\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s>]+))""",
        re.IGNORECASE,
    )


_IMG_ALT = _img_attribute_pattern("alt")
_IMG_SRC = _img_attribute_pattern("src")


def tokenize(value: str) -> List[str]:
    return [
        token for token in _TOKEN_SPLIT.split(value)
        if len(token) >= 3 and token not in STOPWORDS and not token.isdigit()
    ]


def to_bigrams(tokens: List[str]) -> List[str]:
    return [f"{a}_{b}" for a, b in zip(tokens, tokens[1:])]


def strip_html_to_text(html: str) -> str:
    text = _STYLE_BLOCK.sub(" ", _SCRIPT_BLOCK.sub(" ", html))
    text = _ANY_TAG.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()


def extract_img_attributes(html: str, attribute: str) -> List[str]:
    """Values of `alt` or `src` on every <img> tag, normalized."""
    pattern = _IMG_ALT if attribute == "alt" else _IMG_SRC
    out = []
    for match in pattern.finditer(html):
        value = normalize_key(match.group(1) or match.group(2) or match.group(3) or "")
        if value:
            out.append(value)
    return out


def src_to_terms(src: str) -> List[str]:
    """Tokens of an image URL's filename, extension removed."""
    last = normalize_key(src.split("?")[0].split("/")[-1])
    if not last:
        return []
    return tokenize(_FILE_EXTENSION.sub("", last))


def extract_content_signals(
    description_html: Optional[str] = None,
    description: Optional[str] = None,
    image_alt_texts: Optional[Iterable[Optional[str]]] = None,
    handle: Optional[str] = None,
    title: Optional[str] = None,
    vendor: Optional[str] = None,
    product_type: Optional[str] = None,
) -> List[str]:
    """
    Descriptive terms for one product, tokens and bigrams, unique, <= 28.

    Args:
        description_html: Raw description HTML (truncated before parsing)
        description: Plain-text description
        image_alt_texts: Alt text of the product's images
        handle, title, vendor, product_type: Basic product fields

    Returns:
        Ordered unique terms, HTML-derived terms first
    """
    terms: List[str] = []

    def push_tokens(value: Optional[str]) -> None:
        normalized = normalize_key(value)
        if not normalized:
            return
        tokens = tokenize(normalized)
        terms.extend(tokens)
        terms.extend(to_bigrams(tokens))

    html = normalize_key(description_html)[:MAX_HTML_CHARS]
    if html:
        for alt in extract_img_attributes(html, "alt"):
            push_tokens(alt)
        for src in extract_img_attributes(html, "src"):
            terms.extend(src_to_terms(src))
        push_tokens(strip_html_to_text(html)[:MAX_TEXT_CHARS])

    push_tokens(description)
    push_tokens(handle)
    push_tokens(title)
    push_tokens(vendor)
    push_tokens(product_type)
    for alt in image_alt_texts or []:
        push_tokens(alt)

    return unique_first((normalize_key(term) for term in terms), MAX_SIGNAL_TERMS)
