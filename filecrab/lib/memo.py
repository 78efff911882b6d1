"""Identifier generation: opaque storage ids and human-memorable memo ids."""

from __future__ import annotations

import secrets
import string

STORAGE_ID_LENGTH = 16
MEMO_ID_MAX_LENGTH = 40

_ALPHANUMERIC = string.ascii_letters + string.digits

WORDS: tuple[str, ...] = (
    "able", "acid", "acorn", "actor", "agile", "alarm", "album", "alley", "amber", "anchor",
    "angle", "ankle", "apple", "april", "apron", "arena", "arrow", "atlas", "attic", "audio",
    "autumn", "avocado", "bacon", "badge", "bagel", "baker", "balsa", "bamboo", "banjo", "barley",
    "basil", "basket", "beach", "beacon", "bean", "beaver", "bench", "berry", "bicycle", "birch",
    "biscuit", "bison", "blade", "blanket", "blaze", "bloom", "blossom", "board", "bonsai", "boulder",
    "bramble", "bread", "breeze", "brick", "bridge", "brook", "broom", "bubble", "bucket", "buffalo",
    "bugle", "butter", "button", "cabin", "cactus", "camel", "camera", "candle", "canoe", "canyon",
    "carbon", "cargo", "carpet", "carrot", "castle", "cedar", "cello", "chalk", "cheese", "cherry",
    "chess", "chimney", "cider", "cinema", "circle", "citrus", "clay", "cliff", "clock", "cloud",
    "clover", "cobalt", "cocoa", "coconut", "comet", "compass", "copper", "coral", "cotton", "cougar",
    "crab", "crane", "crater", "crayon", "cricket", "crystal", "cumin", "cupcake", "daisy", "dancer",
    "delta", "desert", "diamond", "dolphin", "domino", "donkey", "dragon", "drum", "dune", "eagle",
    "easel", "echo", "eclipse", "elbow", "ember", "emerald", "engine", "falcon", "feather", "fennel",
    "fern", "ferry", "fiddle", "field", "fig", "finch", "fjord", "flame", "flint", "flute",
    "forest", "fossil", "fountain", "fox", "frost", "galaxy", "garden", "garlic", "gazelle", "gecko",
    "geyser", "ginger", "glacier", "globe", "goat", "gondola", "granite", "grape", "gravel", "guitar",
    "gull", "hammock", "harbor", "harp", "hazel", "hedge", "helmet", "heron", "hickory", "honey",
    "horizon", "hornet", "husky", "iceberg", "igloo", "indigo", "island", "ivory", "ivy", "jacket",
    "jaguar", "jasmine", "jelly", "jigsaw", "juniper", "kayak", "kernel", "kettle", "kite", "kiwi",
    "koala", "ladder", "lagoon", "lantern", "larch", "lava", "lemon", "lentil", "library", "lilac",
    "lily", "lime", "linen", "lizard", "llama", "lobster", "locket", "lotus", "lynx", "magnet",
    "mango", "maple", "marble", "meadow", "melon", "meteor", "mint", "mirror", "mitten", "monsoon",
    "moose", "mosaic", "moss", "muffin", "mural", "mustard", "nectar", "needle", "nest", "nickel",
    "noodle", "nutmeg", "oasis", "ocean", "olive", "onion", "orbit", "orchid", "otter", "owl",
    "oyster", "paddle", "palm", "panda", "papaya", "parade", "parrot", "peach", "pebble", "pecan",
    "pelican", "pepper", "piano", "pickle", "pigeon", "pillow", "pine", "planet", "plum", "pocket",
    "pollen", "pony", "poppy", "prairie", "pretzel", "prism", "puffin", "pumpkin", "quail", "quartz",
    "quill", "quilt", "rabbit", "radar", "radish", "rain", "raven", "reef", "ribbon", "ridge",
    "river", "robin", "rocket", "rose", "ruby", "saddle", "saffron", "salmon", "sandal", "sapphire",
    "satchel", "scarf", "shadow", "shell", "sierra", "silver", "sketch", "sled", "sloth", "snow",
    "sonnet", "sparrow", "spice", "spider", "spruce", "squid", "stone", "storm", "summit", "sunset",
    "swallow", "tablet", "tango", "teapot", "thistle", "thunder", "tiger", "timber", "toast", "tomato",
    "topaz", "torch", "toucan", "tulip", "tundra", "turtle", "umbrella", "valley", "vanilla", "velvet",
    "violet", "violin", "volcano", "wagon", "walnut", "walrus", "wasabi", "willow", "window", "winter",
    "wizard", "wombat", "yarrow", "yogurt", "zebra", "zephyr", "zinc", "zucchini",
)


def new_storage_id(length: int = STORAGE_ID_LENGTH) -> str:
    """Return a random alphanumeric key for the object store."""
    return "".join(secrets.choice(_ALPHANUMERIC) for _ in range(length))


def new_memo_id(max_length: int = MEMO_ID_MAX_LENGTH, separator: str = "_") -> str:
    """Return a snake_case phrase of random words no longer than ``max_length``.

    Words are drawn until the next one would overflow the limit, so the
    result always holds at least one word and usually four or five.
    """
    words: list[str] = []
    length = 0
    while True:
        word = secrets.choice(WORDS)
        added = len(word) + (len(separator) if words else 0)
        if length + added > max_length:
            break
        words.append(word)
        length += added
    return separator.join(words)
