import re

UNKNOWN = "Unknown"

NON_MUSICAL_RE = re.compile(
    r"live|show|event|performance|concert|festival|party|presents|featuring|vs\.|&|"
    r"open mic|jam session|workshop|talk|lecture|exhibition"
)

# Checked in order; the first match wins.
GENRE_RULES = [
    ("Electronic", r"\bdj\b|electronic|techno|house|ambient|edm|dubstep|trance|drum.?n.?bass|dnb|"
                   r"breakbeat|garage|minimal|acid|rave"),
    ("Jazz", r"jazz|swing|blues|bebop|fusion|bossa.?nova|big.?band|quartet|quintet|trio.*jazz"),
    ("Hip-Hop", r"hip.?hop|\brap|mc\b|rapper|freestyle|\btrap\b|drill|grime"),
    ("Classical", r"orchestra|symphony|classical|chamber|philharmonic|concerto|opera|baroque"),
    ("Folk", r"folk|acoustic|singer.?songwriter|americana|country|bluegrass|celtic"),
    ("Indie", r"indie|underground|alternative|alt.?rock|shoegaze|dream.?pop|lo.?fi"),
    ("Punk", r"punk|hardcore|\bemo\b|screamo|ska.?punk"),
    ("Metal", r"metal|death|doom|sludge|grind|core$"),
    ("Pop", r"pop|idol|mainstream"),
    ("Reggae", r"reggae|\bska\b|\bdub\b|rastafari|jamaica"),
    ("World", r"world|ethnic|traditional|cultural|african|latin|asian|middle.?eastern"),
    ("Experimental", r"experimental|avant.?garde|noise|drone|soundscape|improvisation"),
    ("R&B", r"r&b|r'n'b|soul|funk|motown"),
]
LATE_RULES = [
    ("J-Rock", r"j.?rock|japanese.*rock|visual.?kei"),
    ("J-Pop", r"j.?pop|japanese.*pop"),
    ("Rock", r"rock|guitar|prog"),
]
GENERIC_NAME_RE = re.compile(r"^(band|group|artist|music|sound|live|show)s?$")


def genre_from_name(name):
    """Guess a genre from keywords in a performer name; Unknown when nothing fits."""
    if not name:
        return UNKNOWN
    lowered = name.lower().strip()

    if NON_MUSICAL_RE.search(lowered):
        return UNKNOWN
    for genre, pattern in GENRE_RULES:
        if re.search(pattern, lowered):
            return genre
    if len(lowered) < 3 or GENERIC_NAME_RE.match(lowered):
        return UNKNOWN
    for genre, pattern in LATE_RULES:
        if re.search(pattern, lowered):
            return genre
    return UNKNOWN


def genre_from_tags(tags):
    """Map a list of streaming-service genre tags to one of our genres."""
    for tag in tags or []:
        genre = genre_from_name(tag)
        if genre != UNKNOWN:
            return genre
    return UNKNOWN


class GenreResolver:
    """Spotify genre when it is a confident match, keyword rules otherwise."""

    def __init__(self, spotify=None):
        self.spotify = spotify

    def __call__(self, name):
        return self.resolve(name)

    def resolve(self, name):
        keyword_genre = genre_from_name(name)
        if self.spotify is not None:
            info = self.spotify.genre_info(name, genre_hint=keyword_genre)
            if info and info.get("genre", UNKNOWN) != UNKNOWN:
                return info["genre"]
        return keyword_genre
