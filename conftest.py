"""Root conftest, loaded before any test module imports storyshelf.cli."""

import os

# CI runners often export FORCE_COLOR=1, which makes Rich wrap CLI output
# in ANSI escapes and breaks substring checks on table cells and messages.
# Rich reads these when the module-level Console is first used.
os.environ.pop("FORCE_COLOR", None)
os.environ["NO_COLOR"] = "1"
