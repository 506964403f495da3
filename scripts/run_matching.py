"""Recompute match suggestions for a MatchFoundry state file.

Pseudocode:
1) Resolve the state file (argument, env MATCHFOUNDRY_STATE_FILE, or default)
2) Load the store
3) Run matchfoundry.matcher.recompute_matches, replacing every previous suggestion
4) Save the store and print a per-category summary

Notes:
- Recompute is a full replace. The state file is locked from load to save, so
  overlapping runs take turns and the later one wins.
"""

from __future__ import annotations

from collections import Counter
from pathlib import Path
import sys

# Ensure project root (parent of scripts/) is on sys.path for package imports
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from matchfoundry.config import state_file
from matchfoundry.matcher import recompute_matches
from matchfoundry.store import Store
from dotenv import load_dotenv


def main(argv: list[str]) -> None:
    """Entry point to recompute suggestions for the given state file.

    Raises:
        FileNotFoundError: If the state file does not exist.
    """
    load_dotenv()
    state_path = Path(argv[1]) if len(argv) > 1 else Path(state_file())
    if not state_path.exists():
        raise FileNotFoundError(f"State file not found: {state_path}")

    print(f"[1/3] Loading state from {state_path}...")
    # Held until saved so CLI commands on the same file wait for this run
    with Store.open(state_path) as store:
        needs = store.list_needs(active_only=True)
        learnings = store.list_learnings(active_only=True)
        print(f"       {len(needs)} active needs, {len(learnings)} active learnings.")

        print("[2/3] Computing matches...")
        suggestions = recompute_matches(store)

        print(f"[3/3] Saving {len(suggestions)} suggestions to {state_path}...")
        store.save(state_path)

    need_category = {n.id: n.category for n in needs}
    per_category = Counter(need_category.get(s.need_id, "other") for s in suggestions)
    for category, count in sorted(per_category.items()):
        print(f"   - {category}: {count}")
    unmatched = len({n.id for n in needs} - {s.need_id for s in suggestions})
    print(f"Done. {unmatched} needs without a suggestion.")


if __name__ == "__main__":
    try:
        main(sys.argv)
    except Exception as exc:
        print(f"Error: {exc}")
        sys.exit(1)
