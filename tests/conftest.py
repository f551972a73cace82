import freezegun
from freezegun.config import DEFAULT_IGNORE_LIST

# freezegun ignores modules by name prefix and ships "gi" (PyGObject) in its
# default ignore list, which also matches "gigscraper". Narrow that entry so
# frozen time reaches the package under test.
freezegun.configure(
    default_ignore_list=[m for m in DEFAULT_IGNORE_LIST if m != "gi"] + ["gi."]
)
