# core/genre.py
from __future__ import annotations

import re
from typing import Optional

UNKNOWN_GENRE = "unknown"

# Order matters: the first bucket with a matching keyword wins.
GENRE_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("bollywood", (
        "bollywood", "hindi", "filmi", "arijit singh", "arijit", "shreya ghoshal",
        "atif aslam", "sonu nigam", "lata mangeshkar", "kishore kumar", "pritam",
        "a.r. rahman", "ar rahman", "t-series", "neha kakkar", "jubin nautiyal",
    )),
    ("punjabi", (
        "punjabi", "bhangra", "diljit", "sidhu moose wala", "ap dhillon",
        "karan aujla", "guru randhawa",
    )),
    ("sufi", ("sufi", "qawwali", "nusrat fateh ali khan", "rahat fateh ali khan")),
    ("classical", (
        "classical", "symphony", "sonata", "concerto", "mozart", "beethoven",
        "bach", "chopin", "raag", "raga",
    )),
    ("lofi", ("lofi", "lo-fi", "slowed", "reverb", "chill beats")),
    ("hip hop", (
        "hip hop", "hip-hop", "rap", "drake", "eminem", "kendrick lamar",
        "divine", "badshah", "honey singh", "raftaar",
    )),
    ("edm", (
        "edm", "house", "techno", "trance", "dubstep", "martin garrix",
        "avicii", "marshmello", "alan walker",
    )),
    ("rock", ("rock", "metal", "linkin park", "nirvana", "queen", "ac/dc", "coldplay")),
    ("jazz", ("jazz", "blues", "swing", "saxophone")),
    ("pop", (
        "pop", "taylor swift", "ed sheeran", "justin bieber", "dua lipa",
        "ariana grande", "the weeknd", "billie eilish",
    )),
]


def _compile(keywords: tuple[str, ...]) -> re.Pattern[str]:
    alternatives = "|".join(re.escape(k) for k in keywords)
    return re.compile(rf"(?<![\w])(?:{alternatives})(?![\w])")


_PATTERNS = [(genre, _compile(keywords)) for genre, keywords in GENRE_KEYWORDS]


def classify_genre(title: str, artist: str = "") -> str:
    """Coarse genre tag for a track, or UNKNOWN_GENRE when nothing matches."""
    text = f"{title or ''} {artist or ''}".lower()
    for genre, pattern in _PATTERNS:
        if pattern.search(text):
            return genre
    return UNKNOWN_GENRE


def known_genre(genre: Optional[str]) -> Optional[str]:
    """Return the genre only when it is usable in queries and display."""
    if not genre or genre == UNKNOWN_GENRE:
        return None
    return genre
