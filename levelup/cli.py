"""
LevelUp CLI: level lookups, demo seeding, table export, audit checks.

Usage:
    python -m levelup.cli level XP            # Level, badge and progress for an XP total
    python -m levelup.cli seed [PATH]         # Load demo data (default: fixtures/seed.yaml)
    python -m levelup.cli users               # List employees with level and coins
    python -m levelup.cli export TABLE        # Print an admin table as CSV
    python -m levelup.cli audit               # Show recent audit entries and verify the chain
    python -m levelup.cli mature-payouts      # Credit referral payouts past their maturity date
"""
import sys
from pathlib import Path

from levelup.config import get_db_path
from levelup.gamification import format_coins, level_summary


def _require_db() -> Path:
    db_path = get_db_path()
    if not db_path.exists():
        print(f"Database not found at {db_path}")
        print("Run `python -m levelup.cli seed` first.")
        sys.exit(1)
    return db_path


def cmd_level():
    if len(sys.argv) < 3 or not sys.argv[2].lstrip("-").isdigit():
        print("Usage: python -m levelup.cli level XP")
        sys.exit(1)
    xp = int(sys.argv[2])
    s = level_summary(xp)
    print("=" * 50)
    print("LEVELUP LEVEL")
    print("=" * 50)
    print(f"\nTotal XP:  {s['xp_label']} ({s['total_xp']})")
    print(f"Level:     {s['level']} {s['badge_emoji']} {s['badge']}")
    bar = "#" * int(s["progress"] * 20)
    print(f"Progress:  {s['current_level_xp']}/{s['next_level_xp']} |{bar:<20}| {s['progress_percent']}%")
    print(f"Next at:   {s['total_xp_for_next_level']} XP")


def cmd_seed():
    from levelup.seed import SEED_PATH, get_seed_user_email, load_seed
    path = Path(sys.argv[2]) if len(sys.argv) > 2 else SEED_PATH
    if not path.exists():
        print(f"Seed file not found at {path}")
        sys.exit(1)
    db_path = get_db_path()
    counts = load_seed(db_path, path)
    print("=" * 50)
    print("LEVELUP SEED")
    print("=" * 50)
    print(f"\nDatabase: {db_path}")
    print(f"Source:   {path}")
    for table, n in counts.items():
        print(f"  {table:20s} {n}")
    if not counts:
        print("  (nothing to load)")
    admin_email = get_seed_user_email(path)
    if admin_email:
        print(f"\nAdmin login: {admin_email}")


def cmd_users():
    from levelup.repository import get_users_list
    users = get_users_list(_require_db())
    print("=" * 50)
    print(f"LEVELUP USERS ({len(users)})")
    print("=" * 50)
    if not users:
        print("\n(no users)")
        return
    for u in users:
        status = "" if u["is_active"] else "  [inactive]"
        print(f"\n  {u['display_name'] or '(no name)'} <{u['email']}>{status}")
        print(f"       level {u['current_level']} · {u['current_xp']} XP · {format_coins(u['coins_balance'])} coins")


def cmd_export():
    from levelup.admin_tables import ADMIN_TABLES, export_csv
    if len(sys.argv) < 3:
        print("Usage: python -m levelup.cli export TABLE")
        print(f"Tables: {', '.join(ADMIN_TABLES)}")
        sys.exit(1)
    table = sys.argv[2]
    if table not in ADMIN_TABLES:
        print(f"Unknown table: {table}")
        sys.exit(1)
    sys.stdout.write(export_csv(_require_db(), table))


def cmd_audit():
    from levelup.witness import AuditChain
    chain = AuditChain(_require_db())
    entries = chain.list_entries(limit=20)
    print("=" * 50)
    print("LEVELUP AUDIT TRAIL (last 20)")
    print("=" * 50)
    print(f"\nChain valid: {'YES' if chain.verify_chain() else 'NO'}")
    if not entries:
        print("\n(no entries)")
        return
    for e in entries:
        print(f"\n  [{e['id']}] {e['action']} by {e['actor_id'] or 'system'}")
        print(f"       on {e['target_table'] or '-'}/{e['target_id'] or '-'} at {e['timestamp']}")
        print(f"       hash: {e['hash'][:16]}...")


def cmd_mature_payouts():
    from levelup.referrals import mature_payouts
    result = mature_payouts(_require_db())
    print("=" * 50)
    print("LEVELUP REFERRAL PAYOUTS")
    print("=" * 50)
    print(f"\nMatured: {result['matured']}")
    for payout_id in result["payout_ids"]:
        print(f"  {payout_id}")


def main():
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(0)
    cmd = sys.argv[1]
    commands = {
        "level": cmd_level,
        "seed": cmd_seed,
        "users": cmd_users,
        "export": cmd_export,
        "audit": cmd_audit,
        "mature-payouts": cmd_mature_payouts,
    }
    if cmd not in commands:
        print(f"Unknown command: {cmd}")
        print(f"Available: {', '.join(commands)}")
        sys.exit(1)
    commands[cmd]()


if __name__ == "__main__":
    main()
