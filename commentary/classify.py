"""
Split Sefaria links into commentary and other connections
"""

from typing import Iterable

from ingestion.schema import CommentaryLink, LinkPartition


def is_commentary(link: CommentaryLink, strict: bool = False) -> bool:
    """
    A link is commentary if Sefaria says so (category / type), or - unless
    `strict` - if its collective English title contains "on" ("Rashi on
    Berakhot"). The substring check is case-sensitive and also matches titles
    like "Responsa" that merely contain the letters.
    """
    if link.category == "Commentary" or link.type == "commentary":
        return True
    if strict:
        return False
    title = link.collective_title.en if link.collective_title else None
    return bool(title) and "on" in title


def classify_links(links: Iterable[CommentaryLink], strict: bool = False) -> LinkPartition:
    """Every link ends up in exactly one of the two lists, input order preserved"""
    partition = LinkPartition()
    for link in links:
        if is_commentary(link, strict=strict):
            partition.commentary.append(link)
        else:
            partition.connection.append(link)
    return partition
