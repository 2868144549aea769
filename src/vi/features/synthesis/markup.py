from __future__ import annotations

from bs4 import BeautifulSoup, Tag

from .types import CLOSE_CLASS


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")


def count_close_controls(html: str) -> int:
    return len(_soup(html).select(f".{CLOSE_CLASS}"))


def ensure_single_close(html: str) -> str:
    """
    Return markup with exactly one element of the dismiss class.

    The first existing control is kept and any others are removed. When none
    exists a close button is appended to the first top-level element (or to the
    fragment itself for bare text). Markup that already conforms is returned
    unchanged.
    """
    soup = _soup(html)
    controls = soup.select(f".{CLOSE_CLASS}")

    if len(controls) == 1:
        return html

    if controls:
        for extra in controls[1:]:
            if not extra.decomposed:  # nested inside an earlier removal
                extra.decompose()
        return str(soup)

    button = soup.new_tag("button", attrs={"class": CLOSE_CLASS, "type": "button", "aria-label": "Close"})
    button.string = "×"

    root = next((c for c in soup.contents if isinstance(c, Tag)), None)
    if root is not None:
        root.append(button)
    else:
        soup.append(button)
    return str(soup)
