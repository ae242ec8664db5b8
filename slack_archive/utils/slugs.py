"""Slug and pseudonym helpers."""
import random
import re
from typing import Optional

DEFAULT_SLUG = "conversation"
MAX_SLUG_WORDS = 10
MAX_SLUG_LENGTH = 60

_MENTION_RE = re.compile(r"<[^>]*>")
_NON_WORD_RE = re.compile(r"[^a-z0-9\s-]")
_SEPARATOR_RE = re.compile(r"[\s_-]+")

ADJECTIVES = (
    "amber", "ancient", "bold", "brave", "bright", "calm", "clever", "cosmic",
    "crimson", "curious", "dapper", "daring", "eager", "electric", "fancy",
    "fearless", "gentle", "gleaming", "golden", "happy", "hidden", "humble",
    "jolly", "kind", "lively", "lucky", "mellow", "misty", "nimble", "noble",
    "patient", "plucky", "polite", "proud", "quiet", "quick", "rapid", "rustic",
    "silent", "silver", "sleepy", "snowy", "solar", "spry", "steady", "sunny",
    "swift", "tidy", "velvet", "vivid", "wandering", "witty", "zesty",
)

NOUNS = (
    "anchor", "badger", "beacon", "birch", "canyon", "cedar", "comet", "coral",
    "cricket", "dolphin", "ember", "falcon", "fern", "finch", "fox", "galaxy",
    "glacier", "harbor", "heron", "island", "jaguar", "kestrel", "lagoon",
    "lantern", "lynx", "maple", "meadow", "meteor", "otter", "owl", "panda",
    "pebble", "pine", "quartz", "raven", "reef", "river", "robin", "sparrow",
    "spruce", "summit", "thistle", "tiger", "tundra", "valley", "walrus",
    "willow", "wombat", "yak", "zephyr",
)


def slugify(text: Optional[str]) -> str:
    """Build a URL slug from the first words of a message.
    
    Slack mentions and links (``<@U123>``, ``<https://...|label>``) are
    dropped. Text with nothing sluggable yields ``"conversation"``.
    """
    if not text:
        return DEFAULT_SLUG
    
    cleaned = _MENTION_RE.sub(" ", text.lower())
    cleaned = _NON_WORD_RE.sub("", cleaned)
    words = [word for word in _SEPARATOR_RE.split(cleaned) if word]
    slug = "-".join(words[:MAX_SLUG_WORDS])[:MAX_SLUG_LENGTH].strip("-")
    
    return slug or DEFAULT_SLUG


def generate_alias(rng: Optional[random.Random] = None) -> str:
    """Generate a random ``adjective-noun`` pseudonym."""
    rng = rng or random
    return f"{rng.choice(ADJECTIVES)}-{rng.choice(NOUNS)}"
