"""Map provider category strings (Google Books, OpenLibrary subjects) to a standard genre list."""

import re
from typing import Iterable, List, Optional

FICTION = 'Fiction'
FANTASY = 'Fantasy'
SCIENCE_FICTION = 'Science Fiction'
MYSTERY = 'Mystery & Thriller'
ROMANCE = 'Romance'
HISTORICAL_FICTION = 'Historical Fiction'
HORROR = 'Horror'
LITERARY_FICTION = 'Literary Fiction'
ADVENTURE = 'Adventure'
YOUNG_ADULT = 'Young Adult'
CHILDRENS = "Children's"
BIOGRAPHY = 'Biography & Memoir'
HISTORY = 'History'
SELF_HELP = 'Self-Help & Personal Development'
BUSINESS = 'Business & Economics'
SCIENCE = 'Science & Nature'
PHILOSOPHY = 'Philosophy & Religion'
PSYCHOLOGY = 'Psychology'
POLITICS = 'Politics & Social Sciences'
TRUE_CRIME = 'True Crime'
TRAVEL = 'Travel'
COOKING = 'Cooking & Food'
ART = 'Art & Photography'
POETRY = 'Poetry'
GRAPHIC_NOVEL = 'Graphic Novel & Comics'

GENRE_MAPPINGS = {
    'fiction': FICTION,
    'general fiction': FICTION,
    'fiction / general': FICTION,
    'literary fiction': LITERARY_FICTION,
    'literary': LITERARY_FICTION,
    'classics': LITERARY_FICTION,
    'fantasy': FANTASY,
    'epic fantasy': FANTASY,
    'fantasy fiction': FANTASY,
    'high fantasy': FANTASY,
    'urban fantasy': FANTASY,
    'science fiction': SCIENCE_FICTION,
    'sci-fi': SCIENCE_FICTION,
    'scifi': SCIENCE_FICTION,
    'dystopian': SCIENCE_FICTION,
    'cyberpunk': SCIENCE_FICTION,
    'space opera': SCIENCE_FICTION,
    'mystery': MYSTERY,
    'thriller': MYSTERY,
    'thrillers': MYSTERY,
    'suspense': MYSTERY,
    'detective': MYSTERY,
    'detective & mystery stories': MYSTERY,
    'crime': MYSTERY,
    'police procedural': MYSTERY,
    'romance': ROMANCE,
    'love stories': ROMANCE,
    'contemporary romance': ROMANCE,
    'historical romance': ROMANCE,
    'historical fiction': HISTORICAL_FICTION,
    'historical': HISTORICAL_FICTION,
    'horror': HORROR,
    'gothic': HORROR,
    'ghost stories': HORROR,
    'adventure': ADVENTURE,
    'action & adventure': ADVENTURE,
    'adventure stories': ADVENTURE,
    'young adult': YOUNG_ADULT,
    'young adult fiction': YOUNG_ADULT,
    'ya': YOUNG_ADULT,
    'teen': YOUNG_ADULT,
    'juvenile fiction': YOUNG_ADULT,
    'children': CHILDRENS,
    'childrens': CHILDRENS,
    'juvenile': CHILDRENS,
    'juvenile nonfiction': CHILDRENS,
    'picture books': CHILDRENS,
    'biography': BIOGRAPHY,
    'autobiography': BIOGRAPHY,
    'memoir': BIOGRAPHY,
    'biography & autobiography': BIOGRAPHY,
    'history': HISTORY,
    'world history': HISTORY,
    'military history': HISTORY,
    'self-help': SELF_HELP,
    'self help': SELF_HELP,
    'personal development': SELF_HELP,
    'business & economics': BUSINESS,
    'business': BUSINESS,
    'economics': BUSINESS,
    'science': SCIENCE,
    'nature': SCIENCE,
    'popular science': SCIENCE,
    'mathematics': SCIENCE,
    'philosophy': PHILOSOPHY,
    'religion': PHILOSOPHY,
    'spirituality': PHILOSOPHY,
    'psychology': PSYCHOLOGY,
    'political science': POLITICS,
    'politics': POLITICS,
    'social science': POLITICS,
    'sociology': POLITICS,
    'true crime': TRUE_CRIME,
    'travel': TRAVEL,
    'cooking': COOKING,
    'food': COOKING,
    'art': ART,
    'photography': ART,
    'poetry': POETRY,
    'comics & graphic novels': GRAPHIC_NOVEL,
    'graphic novels': GRAPHIC_NOVEL,
    'comics': GRAPHIC_NOVEL,
    'manga': GRAPHIC_NOVEL,
}

# Overly specific subjects (places, decades, country codes) carry no genre signal
_IGNORE_PATTERNS = [
    re.compile(r'middle earth', re.I),
    re.compile(r'imaginary place', re.I),
    re.compile(r'translations into', re.I),
    re.compile(r'\d{4}s$'),
    re.compile(r'^[a-z]{2}$', re.I),
    re.compile(r'^legends$', re.I),
]


def _capitalize_words(text: str) -> str:
    return ' '.join(w[:1].upper() + w[1:] for w in text.split(' '))


def normalize_genre(raw: Optional[str]) -> Optional[str]:
    """Map one provider category to a standard genre, or None if it carries no signal."""
    if not raw or not str(raw).strip():
        return None
    cleaned = re.sub(r'\s+', ' ', str(raw).strip().lower())
    cleaned = re.sub(r'[\'"]', '', cleaned)
    cleaned = re.sub(r'\band\b', '&', cleaned)

    if cleaned in GENRE_MAPPINGS:
        return GENRE_MAPPINGS[cleaned]

    if any(p.search(cleaned) for p in _IGNORE_PATTERNS):
        return None

    # Hierarchical paths ("Fiction / Fantasy / Epic"): the most specific known part wins
    parts = [p.strip() for p in re.split(r'[/,>]', cleaned) if p.strip()]
    for part in reversed(parts):
        if part in GENRE_MAPPINGS:
            return GENRE_MAPPINGS[part]

    for key, value in GENRE_MAPPINGS.items():
        if len(key) > 3 and key in cleaned:
            return value

    if parts and len(cleaned) < 30 and '(' not in cleaned and len(parts) <= 2:
        return _capitalize_words(parts[-1])
    return None


def normalize_genres(categories: Iterable[str], max_genres: int = 3) -> Optional[str]:
    """Normalize a list of categories into a comma-joined string of unique standard genres."""
    result: List[str] = []
    for category in categories or []:
        genre = normalize_genre(category)
        if genre and genre not in result:
            result.append(genre)
        if len(result) >= max_genres:
            break
    return ', '.join(result) if result else None
